"""Tests for per-question evaluation."""

import pytest

from exam_engine.models.exam import question_adapter
from exam_engine.services.evaluator import evaluate, parse_number


def _question(**data):
    data.setdefault("id", "q")
    data.setdefault("marks", 4)
    data.setdefault("negative_marks", 1)
    return question_adapter.validate_python(data)


@pytest.fixture
def single_choice():
    return _question(
        type="SINGLE_CHOICE",
        options=[{"id": "A"}, {"id": "B"}, {"id": "C"}],
        correct_answer="B",
    )


@pytest.fixture
def multi_select():
    return _question(
        type="MULTIPLE_SELECT",
        options=[{"id": "A"}, {"id": "B"}, {"id": "C"}, {"id": "D"}],
        correct_answer=["A", "C", "D"],
        marks=6,
    )


@pytest.fixture
def numerical():
    return _question(type="NUMERICAL", correct_answer=42, numeric_tolerance=0.5)


class TestSingleChoice:
    def test_correct(self, single_choice):
        result = evaluate(single_choice, "B")
        assert result.is_correct
        assert not result.is_skipped
        assert result.marks_awarded == 4

    def test_incorrect_applies_negative_marks(self, single_choice):
        result = evaluate(single_choice, "A")
        assert not result.is_correct
        assert not result.is_skipped
        assert result.marks_awarded == -1

    @pytest.mark.parametrize("raw", [None, "", "   ", []])
    def test_blank_is_skipped(self, single_choice, raw):
        result = evaluate(single_choice, raw)
        assert result.is_skipped
        assert not result.is_correct
        assert result.marks_awarded == 0

    def test_unknown_option_is_incorrect(self, single_choice):
        assert evaluate(single_choice, "Z").marks_awarded == -1

    def test_wrong_shape_is_incorrect(self, single_choice):
        result = evaluate(single_choice, 7)
        assert not result.is_correct
        assert not result.is_skipped


class TestTrueFalse:
    @pytest.fixture
    def question(self):
        return _question(type="TRUE_FALSE", correct_answer=False)

    def test_boolean_answers(self, question):
        assert evaluate(question, False).is_correct
        assert evaluate(question, True).marks_awarded == -1

    def test_string_booleans(self, question):
        assert evaluate(question, "false").is_correct
        assert not evaluate(question, "TRUE").is_correct

    def test_missing_is_skipped(self, question):
        assert evaluate(question, None).is_skipped

    def test_garbage_is_incorrect(self, question):
        result = evaluate(question, "maybe")
        assert not result.is_skipped
        assert result.marks_awarded == -1


class TestMultipleChoice:
    def test_order_independent(self, multi_select):
        result = evaluate(multi_select, ["D", "A", "C"])
        assert result.is_correct
        assert result.marks_awarded == 6

    def test_duplicates_do_not_matter(self, multi_select):
        assert evaluate(multi_select, ["A", "C", "D", "A"]).is_correct

    def test_subset_is_incorrect_without_partial_marking(self, multi_select):
        result = evaluate(multi_select, ["A", "C"])
        assert not result.is_correct
        assert result.marks_awarded == -1

    def test_empty_selection_is_skipped(self, multi_select):
        assert evaluate(multi_select, []).is_skipped

    def test_non_string_items_are_incorrect(self, multi_select):
        result = evaluate(multi_select, ["A", 3])
        assert not result.is_skipped
        assert not result.is_correct

    def test_multiple_choice_tag_behaves_the_same(self):
        question = _question(type="MULTIPLE_CHOICE", correct_answer=["A", "B"])
        assert evaluate(question, ["B", "A"]).is_correct

    def test_partial_marking_is_proportional(self, multi_select):
        # 2 of 3 correct options, no wrong ones
        result = evaluate(multi_select, ["A", "C"], partial_marking=True)
        assert not result.is_correct
        assert result.marks_awarded == pytest.approx(4.0)

    def test_partial_marking_subtracts_wrong_selections(self, multi_select):
        result = evaluate(multi_select, ["A", "C", "B"], partial_marking=True)
        assert result.marks_awarded == pytest.approx(2.0)

    def test_partial_marking_floors_at_zero(self, multi_select):
        result = evaluate(multi_select, ["B"], partial_marking=True)
        assert result.marks_awarded == 0

    def test_partial_marking_full_match_still_correct(self, multi_select):
        result = evaluate(multi_select, ["A", "C", "D"], partial_marking=True)
        assert result.is_correct
        assert result.marks_awarded == 6


class TestNumerical:
    @pytest.mark.parametrize("raw", [42, 42.3, 41.5, 42.5, "42.4", " 41.6 "])
    def test_within_tolerance(self, numerical, raw):
        result = evaluate(numerical, raw)
        assert result.is_correct
        assert result.marks_awarded == 4

    @pytest.mark.parametrize("raw", [42.51, 41.4, "100"])
    def test_outside_tolerance(self, numerical, raw):
        result = evaluate(numerical, raw)
        assert not result.is_correct
        assert not result.is_skipped
        assert result.marks_awarded == -1

    @pytest.mark.parametrize("raw", [None, "", "forty-two", True, float("nan"), ["42"]])
    def test_unparseable_is_skipped(self, numerical, raw):
        result = evaluate(numerical, raw)
        assert result.is_skipped
        assert result.marks_awarded == 0

    def test_exact_match_compares_numbers_not_strings(self):
        question = _question(type="NUMERICAL", correct_answer=0.3)
        assert evaluate(question, "0.30").is_correct
        assert evaluate(question, 0.3).is_correct
        assert not evaluate(question, 0.30001).is_correct


def test_parse_number():
    assert parse_number("1e3") == 1000
    assert parse_number("inf") is None
    assert parse_number(False) is None
    assert parse_number({"value": 1}) is None


@pytest.mark.parametrize("raw", ["1e999999999", "-1e999999999", "1e-999999999"])
def test_extreme_exponents_are_scored_not_raised(numerical, raw):
    result = evaluate(numerical, raw)
    assert not result.is_skipped
    assert not result.is_correct
    assert result.marks_awarded == -1


@pytest.mark.parametrize("raw", [{"value": 42}, [1, 2], {"ids": ["B"]}])
def test_unexpected_shapes_never_raise(single_choice, numerical, multi_select, raw):
    for question in (single_choice, numerical, multi_select):
        result = evaluate(question, raw)
        assert not result.is_correct
