"""Runtime evaluation of conditional question visibility."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from intake_flow.conditions import broken_sources, question_display
from intake_flow.models import OPERATOR_AND, OPERATOR_OR, Condition, Question, sort_by_flow

REQUIRED_MESSAGE = "This field is required"


@dataclass(frozen=True)
class SingleAnswer:
    """One chosen label (single choice or free text)."""

    text: str


@dataclass(frozen=True)
class MultipleAnswer:
    """Several chosen labels (multi-select)."""

    texts: Tuple[str, ...]


@dataclass(frozen=True)
class TaggedAnswer:
    """An option record exposing ``text`` plus metadata such as cost or image."""

    text: str
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)


AnswerValue = Union[SingleAnswer, MultipleAnswer, TaggedAnswer]


def _label_of(item: Any) -> Optional[str]:
    """Return the label carried by one answer element, if any."""

    if item is None:
        return None
    if isinstance(item, str):
        label = item.strip()
    elif isinstance(item, Mapping):
        text = item.get("text")
        label = str(text).strip() if text is not None else ""
    elif hasattr(item, "text"):
        text = getattr(item, "text")
        label = str(text).strip() if text is not None else ""
    else:
        label = str(item).strip()
    return label or None


def coerce_answer(raw: Any) -> Optional[AnswerValue]:
    """Convert a raw collected answer to an :data:`AnswerValue`.

    Returns ``None`` when nothing was recorded (``None``, a blank string or an
    empty list).
    """

    if isinstance(raw, (SingleAnswer, MultipleAnswer, TaggedAnswer)):
        return raw
    if raw is None:
        return None
    if isinstance(raw, str):
        label = raw.strip()
        return SingleAnswer(label) if label else None
    if isinstance(raw, Mapping):
        label = _label_of(raw)
        if label is None:
            return None
        return TaggedAnswer(label, {key: value for key, value in raw.items() if key != "text"})
    if isinstance(raw, (Sequence, set, frozenset)) and not isinstance(raw, bytes):
        labels: List[str] = []
        for item in raw:
            label = _label_of(item)
            if label is not None and label not in labels:
                labels.append(label)
        return MultipleAnswer(tuple(labels)) if labels else None
    label = _label_of(raw)
    return SingleAnswer(label) if label is not None else None


def selected_labels(value: Any) -> FrozenSet[str]:
    """Return the flat set of chosen labels for any supported answer shape."""

    answer = coerce_answer(value)
    if answer is None:
        return frozenset()
    if isinstance(answer, MultipleAnswer):
        return frozenset(answer.texts)
    return frozenset({answer.text})


def has_answer(answers: Mapping[str, Any], question_id: str) -> bool:
    return coerce_answer(answers.get(question_id)) is not None


def evaluate_condition(condition: Condition, answers: Mapping[str, Any]) -> bool:
    """Evaluate one condition against the collected answers.

    An unanswered source never satisfies a condition, whatever the operator.
    """

    selected = selected_labels(answers.get(condition.source_question_id))
    if not selected:
        return False
    expected = set(condition.values)
    if condition.operator == OPERATOR_OR:
        return bool(selected & expected)
    return expected.issubset(selected)


def is_visible(
    question: Question,
    answers: Mapping[str, Any],
    *,
    questions: Optional[Iterable[Question]] = None,
) -> bool:
    """Return ``True`` when ``question`` should be shown for ``answers``.

    When the full question list is passed, conditions whose source is missing,
    deleted or not earlier in the flow are treated as never satisfied.
    """

    display = question_display(question)
    if display is None:
        return True

    unsatisfiable = set(broken_sources(question, questions)) if questions is not None else set()
    results = [
        condition.source_question_id not in unsatisfiable and evaluate_condition(condition, answers)
        for condition in display.conditions
    ]
    if display.group_operator == OPERATOR_AND:
        return all(results)
    return any(results)


def visible_questions(
    questions: Iterable[Question],
    answers: Mapping[str, Any],
    *,
    step: Optional[int] = None,
) -> List[Question]:
    """Return active questions shown for ``answers`` in flow order."""

    pool = [question for question in questions if not question.is_deleted]
    shown = []
    for question in sort_by_flow(pool):
        if not question.is_active:
            continue
        if step is not None and question.step_number != step:
            continue
        if is_visible(question, answers, questions=pool):
            shown.append(question)
    return shown


def missing_required_answers(
    questions: Iterable[Question], answers: Mapping[str, Any]
) -> Dict[str, str]:
    """Return ``{question_id: message}`` for visible required questions left blank."""

    return {
        question.question_id: REQUIRED_MESSAGE
        for question in visible_questions(questions, answers)
        if question.is_required and not has_answer(answers, question.question_id)
    }


def toggle_selection(question: Question, current: Any, option: str) -> Any:
    """Return the new answer after the respondent clicks ``option``.

    Single-choice questions take the clicked option; multi-select questions
    toggle it in or out of the current selection.
    """

    if not (question.is_multiple_choice and question.allow_multiple_selections):
        return option

    if isinstance(current, list):
        selection = list(current)
    elif current:
        selection = [current]
    else:
        selection = []
    if option in selection:
        return [item for item in selection if item != option]
    return selection + [option]


__all__ = [
    "AnswerValue",
    "MultipleAnswer",
    "REQUIRED_MESSAGE",
    "SingleAnswer",
    "TaggedAnswer",
    "coerce_answer",
    "evaluate_condition",
    "has_answer",
    "is_visible",
    "missing_required_answers",
    "selected_labels",
    "toggle_selection",
    "visible_questions",
]
