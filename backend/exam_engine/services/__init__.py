"""Business logic services."""

from .attempts import AttemptService
from .catalog import CatalogService
from .evaluator import evaluate
from .ranking import RankingService, compute_rankings
from .repository import AttemptRepository, CatalogRepository, SqlAttemptRepository
from .results import assemble_result
from .scoring import aggregate

__all__ = [
    "AttemptService",
    "CatalogService",
    "evaluate",
    "RankingService",
    "compute_rankings",
    "AttemptRepository",
    "CatalogRepository",
    "SqlAttemptRepository",
    "assemble_result",
    "aggregate",
]
