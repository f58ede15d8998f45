"""Parsing and normalisation of ``conditional_display`` records.

Two record shapes exist in storage:

* legacy, a single condition stored at the top level::

    {"dependent_on_question_id": "q1",
     "show_when_answer_equals": ["Gas"],
     "logical_operator": "OR"}

* canonical, one or more conditions plus a group operator::

    {"conditions": [{"source_question_id": "q1", "operator": "OR", "values": ["Gas"]}],
     "group_operator": "AND"}

Everything outside this module works with :class:`ConditionalDisplay` only.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Dict, Iterable, List, Optional, Tuple

from intake_flow.errors import ShapeError
from intake_flow.models import (
    OPERATOR_AND,
    OPERATOR_OR,
    OPERATORS,
    Condition,
    ConditionalDisplay,
    Question,
)

logger = logging.getLogger(__name__)

LEGACY_SOURCE_KEY = "dependent_on_question_id"
LEGACY_VALUES_KEY = "show_when_answer_equals"
LEGACY_OPERATOR_KEY = "logical_operator"

SOURCE_KEY = "source_question_id"
VALUES_KEY = "values"
OPERATOR_KEY = "operator"
CONDITIONS_KEY = "conditions"
GROUP_OPERATOR_KEY = "group_operator"

NO_OPTIONS_MESSAGE = "No options available"

_OPERATOR_ALIASES = {"and": OPERATOR_AND, "all": OPERATOR_AND, "or": OPERATOR_OR, "any": OPERATOR_OR}


def _parse_operator(value: Any, default: str) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, str):
        operator = _OPERATOR_ALIASES.get(value.strip().lower())
        if operator is not None:
            return operator
    raise ShapeError(f"Unsupported operator: {value!r}")


def _parse_values(value: Any) -> Tuple[str, ...]:
    """Return ordered, de-duplicated labels from a stored value list."""

    if isinstance(value, str):
        items: Iterable[Any] = [value]
    elif isinstance(value, Sequence):
        items = value
    elif isinstance(value, (set, frozenset)):
        items = sorted(value, key=str)
    else:
        raise ShapeError(f"Condition values must be a list, got {type(value).__name__}")

    labels: List[str] = []
    for item in items:
        if isinstance(item, Mapping):
            item = item.get("text")
        if item is None:
            continue
        label = str(item).strip()
        if label and label not in labels:
            labels.append(label)
    return tuple(labels)


def _parse_condition(raw: Any, *, index: int = 0) -> Condition:
    if not isinstance(raw, Mapping):
        raise ShapeError(f"Condition {index + 1} is not a mapping")

    source = raw.get(SOURCE_KEY, raw.get(LEGACY_SOURCE_KEY))
    source_id = str(source).strip() if source is not None else ""
    if not source_id:
        raise ShapeError(f"Condition {index + 1} has no source question")

    values = _parse_values(raw.get(VALUES_KEY, raw.get(LEGACY_VALUES_KEY, [])))
    if not values:
        raise ShapeError(f"Condition {index + 1} has no values")

    operator = _parse_operator(raw.get(OPERATOR_KEY, raw.get(LEGACY_OPERATOR_KEY)), OPERATOR_OR)
    return Condition(source_question_id=source_id, operator=operator, values=values)


def is_legacy_shape(raw: Any) -> bool:
    """Return ``True`` if ``raw`` stores a single condition at the top level."""

    return (
        isinstance(raw, Mapping)
        and CONDITIONS_KEY not in raw
        and (LEGACY_SOURCE_KEY in raw or SOURCE_KEY in raw)
    )


def parse_conditional_display(raw: Any) -> Optional[ConditionalDisplay]:
    """Parse either stored shape into canonical form.

    Returns ``None`` for an unconditional question and raises
    :class:`ShapeError` when ``raw`` is neither shape.
    """

    if raw is None:
        return None
    if isinstance(raw, ConditionalDisplay):
        return raw
    if not isinstance(raw, Mapping):
        raise ShapeError(f"conditional_display must be a mapping, got {type(raw).__name__}")
    if not raw:
        return None

    if CONDITIONS_KEY in raw:
        rows = raw.get(CONDITIONS_KEY)
        if not isinstance(rows, Sequence) or isinstance(rows, (str, bytes)):
            raise ShapeError("conditions must be a list")
        if not rows:
            return None
        conditions = tuple(_parse_condition(row, index=index) for index, row in enumerate(rows))
        group_operator = _parse_operator(raw.get(GROUP_OPERATOR_KEY), OPERATOR_AND)
        return ConditionalDisplay(conditions=conditions, group_operator=group_operator)

    if is_legacy_shape(raw):
        return ConditionalDisplay(conditions=(_parse_condition(raw),), group_operator=OPERATOR_AND)

    raise ShapeError("conditional_display matches neither the legacy nor the canonical shape")


def normalize(raw: Any) -> Optional[ConditionalDisplay]:
    """Return the canonical display for ``raw``; malformed records become ``None``."""

    try:
        return parse_conditional_display(raw)
    except ShapeError as exc:
        logger.warning("Ignoring malformed conditional_display: %s", exc)
        return None


def denormalize(display: Optional[ConditionalDisplay]) -> Optional[Dict[str, Any]]:
    """Return the canonical persisted record for ``display``."""

    if display is None or not display.conditions:
        return None
    return {
        CONDITIONS_KEY: [
            {
                SOURCE_KEY: condition.source_question_id,
                OPERATOR_KEY: condition.operator,
                VALUES_KEY: list(condition.values),
            }
            for condition in display.conditions
        ],
        GROUP_OPERATOR_KEY: display.group_operator,
    }


def question_display(question: Question) -> Optional[ConditionalDisplay]:
    """Shortcut for ``normalize(question.conditional_display)``."""

    return normalize(question.conditional_display)


def option_labels(question: Optional[Question]) -> List[str]:
    """Return the selectable option labels of ``question`` in order.

    Options may be plain strings or records exposing ``text``. Questions that
    are not multiple choice have no selectable labels.
    """

    if question is None or not question.is_multiple_choice:
        return []

    labels: List[str] = []
    for option in question.answer_options:
        if isinstance(option, Mapping):
            text = option.get("text")
        elif isinstance(option, str):
            text = option
        else:
            text = getattr(option, "text", None)
        label = str(text).strip() if text is not None else ""
        if label:
            labels.append(label)
    return labels


def answer_option_records(question: Question) -> List[Dict[str, Any]]:
    """Return options as ``{"text", "image"}`` records.

    String options are paired with ``answer_images`` by position.
    """

    records: List[Dict[str, Any]] = []
    for index, option in enumerate(question.answer_options):
        if isinstance(option, Mapping):
            record = dict(option)
            record["text"] = str(option.get("text") or "")
            record["image"] = str(option.get("image") or "")
        else:
            image = question.answer_images[index] if index < len(question.answer_images) else ""
            record = {"text": option if isinstance(option, str) else "", "image": image or ""}
        records.append(record)
    return records


def is_condition_source(question: Question) -> bool:
    """Return ``True`` if ``question`` exposes labels a condition can match."""

    return bool(option_labels(question))


def describe_conditional_display(
    display: Optional[ConditionalDisplay], questions: Iterable[Question] = ()
) -> str:
    """Return a one-line, human readable summary of ``display``."""

    if display is None:
        return "Always shown"

    texts = {question.question_id: question.question_text for question in questions}
    parts = []
    for condition in display.conditions:
        source = texts.get(condition.source_question_id) or condition.source_question_id
        mode = "any of" if condition.operator == OPERATOR_OR else "all of"
        parts.append(f'"{source}" is {mode} {", ".join(condition.values)}')
    return f" {display.group_operator} ".join(parts)


def integrity_issues(questions: Iterable[Question]) -> Dict[str, List[str]]:
    """Return ``{target_id: [message, ...]}`` for unsatisfiable conditions.

    A condition is flagged when its source question is unknown, soft-deleted,
    or no longer strictly earlier in flow order than the target.
    """

    pool = list(questions)
    lookup = {question.question_id: question for question in pool}
    issues: Dict[str, List[str]] = {}
    for question in pool:
        if question.is_deleted:
            continue
        display = question_display(question)
        if display is None:
            continue
        for condition in display.conditions:
            source = lookup.get(condition.source_question_id)
            if source is None:
                message = f"source {condition.source_question_id} does not exist"
            elif source.is_deleted:
                message = f"source {condition.source_question_id} was deleted"
            elif not source.precedes(question):
                message = f"source {condition.source_question_id} no longer precedes this question"
            else:
                continue
            issues.setdefault(question.question_id, []).append(message)
    return issues


def broken_sources(question: Question, questions: Iterable[Question]) -> List[str]:
    """Return source ids of ``question``'s conditions that can never be satisfied."""

    pool = list(questions)
    lookup = {item.question_id: item for item in pool}
    display = question_display(question)
    if display is None:
        return []
    broken: List[str] = []
    for source_id in display.source_question_ids:
        source = lookup.get(source_id)
        if source is None or source.is_deleted or not source.precedes(question):
            broken.append(source_id)
    return broken


# ``OPERATORS`` is re-exported for dialog widgets.
__all__ = [
    "NO_OPTIONS_MESSAGE",
    "OPERATORS",
    "answer_option_records",
    "broken_sources",
    "denormalize",
    "describe_conditional_display",
    "integrity_issues",
    "is_condition_source",
    "is_legacy_shape",
    "normalize",
    "option_labels",
    "parse_conditional_display",
    "question_display",
]
