"""Authenticated principal supplied by the identity provider."""

from pydantic import BaseModel, Field


class Principal(BaseModel):
    """The caller of an engine operation."""

    user_id: str = Field(min_length=1)
    role: str = "student"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "7d1c2f0e-5a7b-4c37-9a53-4c1f1a2b3c4d",
                "role": "student",
            }
        }
