"""Tests for runtime question visibility."""

from __future__ import annotations

import copy

import pytest

from intake_flow.models import Condition, Question
from intake_flow.visibility import (
    MultipleAnswer,
    SingleAnswer,
    TaggedAnswer,
    coerce_answer,
    evaluate_condition,
    is_visible,
    missing_required_answers,
    selected_labels,
    toggle_selection,
    visible_questions,
)


def _choice(question_id: str, options, step: int = 1, order: int = 1, **overrides) -> Question:
    record = {
        "question_id": question_id,
        "question_text": f"Question {question_id}",
        "step_number": step,
        "display_order_in_step": order,
        "is_multiple_choice": True,
        "answer_options": list(options),
    }
    record.update(overrides)
    return Question.from_record(record)


def _display(*conditions, group: str = "AND"):
    return {
        "conditions": [
            {"source_question_id": source, "operator": operator, "values": list(values)}
            for source, operator, values in conditions
        ],
        "group_operator": group,
    }


@pytest.fixture
def heating_questions():
    q1 = _choice("q1", ["Gas", "Electric", "LPG"])
    q2 = _choice(
        "q2",
        ["Combi", "Regular"],
        order=2,
        conditional_display={
            "dependent_on_question_id": "q1",
            "show_when_answer_equals": ["Gas"],
            "logical_operator": "OR",
        },
    )
    q3 = _choice(
        "q3",
        ["Yes", "No"],
        order=3,
        conditional_display=_display(("q1", "OR", ["Gas", "LPG"]), ("q2", "OR", ["Combi"])),
    )
    return [q1, q2, q3]


def test_single_condition_follows_source_answer(heating_questions) -> None:
    """A single OR condition shows the question only for a matching answer."""

    q2 = heating_questions[1]

    assert is_visible(q2, {"q1": "Gas"})
    assert not is_visible(q2, {"q1": "Electric"})
    assert not is_visible(q2, {})


def test_and_group_requires_every_condition(heating_questions) -> None:
    """An AND group needs every condition to hold."""

    q3 = heating_questions[2]

    assert is_visible(q3, {"q1": "Gas", "q2": "Combi"})
    assert is_visible(q3, {"q1": "LPG", "q2": "Combi"})
    assert not is_visible(q3, {"q1": "Gas", "q2": "Regular"})


def test_or_group_needs_one_condition() -> None:
    """An OR group needs only one condition to hold."""

    question = _choice(
        "q3",
        ["Yes"],
        order=3,
        conditional_display=_display(("q1", "OR", ["Gas"]), ("q2", "OR", ["Combi"]), group="OR"),
    )

    assert is_visible(question, {"q1": "Electric", "q2": "Combi"})
    assert not is_visible(question, {"q1": "Electric", "q2": "Regular"})


def test_and_operator_needs_every_value_selected() -> None:
    """The AND operator requires all configured values to be selected."""

    condition = Condition("q1", "AND", ("Kitchen", "Bathroom"))

    assert evaluate_condition(condition, {"q1": ["Kitchen", "Bathroom", "Loft"]})
    assert not evaluate_condition(condition, {"q1": ["Kitchen"]})
    assert not evaluate_condition(condition, {"q1": []})


def test_unconditional_questions_are_always_visible() -> None:
    """Questions without a display are always shown."""

    assert is_visible(_choice("q1", ["Gas"]), {})


def test_malformed_display_is_treated_as_unconditional() -> None:
    """A malformed display does not hide the question."""

    question = _choice("q2", ["Yes"], order=2, conditional_display={"conditions": [{"source_question_id": "q1"}]})

    assert is_visible(question, {})


def test_evaluation_does_not_mutate_answers(heating_questions) -> None:
    """Evaluating visibility leaves the answers unchanged and repeatable."""

    answers = {"q1": ["Gas"], "q2": {"text": "Combi", "cost": 10}}
    snapshot = copy.deepcopy(answers)

    first = [question.question_id for question in visible_questions(heating_questions, answers)]
    second = [question.question_id for question in visible_questions(heating_questions, answers)]

    assert first == second == ["q1", "q2", "q3"]
    assert answers == snapshot


def test_dangling_sources_are_never_satisfied_with_question_list() -> None:
    """Conditions on unknown sources never hold when the flow is known."""

    q1 = _choice("q1", ["Gas"])
    q2 = _choice("q2", ["Yes"], order=2, conditional_display=_display(("missing", "OR", ["Gas"])))

    assert not is_visible(q2, {"missing": "Gas"}, questions=[q1, q2])
    assert is_visible(q2, {"missing": "Gas"})


def test_later_source_is_never_satisfied_with_question_list() -> None:
    """Conditions on later questions never hold when the flow is known."""

    q1 = _choice("q1", ["Yes"], conditional_display=_display(("q2", "OR", ["Gas"])))
    q2 = _choice("q2", ["Gas"], order=2)

    assert not is_visible(q1, {"q2": "Gas"}, questions=[q1, q2])


def test_answer_shapes_are_coerced() -> None:
    """Strings, lists and option records are coerced to answer variants."""

    assert coerce_answer("Gas") == SingleAnswer("Gas")
    assert coerce_answer(["Gas", "Gas", {"text": "LPG"}]) == MultipleAnswer(("Gas", "LPG"))
    assert coerce_answer({"text": "Gas", "cost": 5}) == TaggedAnswer("Gas", {"cost": 5})
    assert coerce_answer("  ") is None
    assert coerce_answer([]) is None
    assert coerce_answer(None) is None
    assert selected_labels({"text": "Gas"}) == frozenset({"Gas"})


def test_visible_questions_skip_inactive_deleted_and_other_steps(heating_questions) -> None:
    """Only active, shown questions of the requested step are returned."""

    questions = heating_questions + [
        _choice("q4", ["Yes"], order=4, status="inactive"),
        _choice("q5", ["Yes"], order=5, is_deleted=True),
        _choice("q6", ["Yes"], step=2),
    ]

    assert [q.question_id for q in visible_questions(questions, {"q1": "Electric"})] == ["q1", "q6"]
    assert [q.question_id for q in visible_questions(questions, {}, step=2)] == ["q6"]


def test_missing_required_answers_ignore_hidden_questions(heating_questions) -> None:
    """Hidden required questions are not reported as missing."""

    optional = _choice("q4", ["Yes"], order=4, is_required=False)
    questions = heating_questions + [optional]

    assert missing_required_answers(questions, {"q1": "Electric"}) == {}
    assert missing_required_answers(questions, {"q1": "Gas"}) == {"q2": "This field is required"}
    assert missing_required_answers(questions, {}) == {"q1": "This field is required"}


def test_toggle_selection_for_single_and_multiple_choice() -> None:
    """Clicks replace single answers and toggle multi-select answers."""

    single = _choice("q1", ["Gas", "Electric"])
    multiple = _choice("q2", ["Kitchen", "Bathroom"], allow_multiple_selections=True)

    assert toggle_selection(single, "Gas", "Electric") == "Electric"
    assert toggle_selection(multiple, None, "Kitchen") == ["Kitchen"]
    assert toggle_selection(multiple, ["Kitchen"], "Bathroom") == ["Kitchen", "Bathroom"]
    assert toggle_selection(multiple, ["Kitchen", "Bathroom"], "Kitchen") == ["Bathroom"]
