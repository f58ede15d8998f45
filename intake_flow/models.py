"""Record types shared by the store, the evaluator and the flow compiler."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Tuple

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUSES: Tuple[str, ...] = (STATUS_ACTIVE, STATUS_INACTIVE)

OPERATOR_AND = "AND"
OPERATOR_OR = "OR"
OPERATORS: Tuple[str, ...] = (OPERATOR_AND, OPERATOR_OR)


def _clean_text(value: Any) -> str:
    """Return ``value`` converted to a trimmed string."""

    if isinstance(value, str):
        return value.strip()
    if value is None:
        return ""
    return str(value).strip()


def _positive_int(value: Any, default: int = 1) -> int:
    """Return ``value`` as a positive integer, falling back to ``default``."""

    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


@dataclass(frozen=True)
class Condition:
    """One rule comparing a source question's answer against option labels."""

    source_question_id: str
    operator: str = OPERATOR_OR
    values: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConditionalDisplay:
    """The full visibility rule of a question."""

    conditions: Tuple[Condition, ...]
    group_operator: str = OPERATOR_AND

    @property
    def source_question_ids(self) -> List[str]:
        """Distinct source ids in condition order."""

        seen: List[str] = []
        for condition in self.conditions:
            if condition.source_question_id not in seen:
                seen.append(condition.source_question_id)
        return seen


@dataclass(frozen=True)
class FlowPosition:
    """A ``(step, order)`` slot in the question flow."""

    step: int
    order: int

    def as_dict(self) -> Dict[str, int]:
        return {"step": self.step, "order": self.order}

    @classmethod
    def from_value(cls, value: Any) -> "FlowPosition":
        if isinstance(value, FlowPosition):
            return value
        if isinstance(value, Mapping):
            return cls(_positive_int(value.get("step")), _positive_int(value.get("order")))
        step, order = value
        return cls(_positive_int(step), _positive_int(order))


@dataclass(frozen=True)
class Question:
    """A single intake form question as persisted by the question store.

    ``conditional_display`` keeps the raw persisted mapping (legacy or
    canonical) so records round-trip through the store untouched; use
    :func:`intake_flow.conditions.normalize` to read it.
    """

    question_id: str
    question_text: str = ""
    service_category_id: str = ""
    step_number: int = 1
    display_order_in_step: int = 1
    is_multiple_choice: bool = False
    allow_multiple_selections: bool = False
    is_required: bool = True
    answer_options: List[Any] = field(default_factory=list)
    answer_images: List[str] = field(default_factory=list)
    has_helper_video: bool = False
    helper_video_url: Optional[str] = None
    status: str = STATUS_ACTIVE
    is_deleted: bool = False
    conditional_display: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def flow_position(self) -> Tuple[int, int]:
        return (self.step_number, self.display_order_in_step)

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def precedes(self, other: "Question") -> bool:
        """Return ``True`` when this question comes strictly before ``other``."""

        return self.flow_position < other.flow_position

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Question":
        """Build a question from a stored record, keeping unknown keys."""

        known = {item.name for item in fields(cls)}
        options = record.get("answer_options")
        images = record.get("answer_images")
        display = record.get("conditional_display")
        status = _clean_text(record.get("status")).lower() or STATUS_ACTIVE
        return cls(
            question_id=_clean_text(record.get("question_id")),
            question_text=_clean_text(record.get("question_text")),
            service_category_id=_clean_text(record.get("service_category_id")),
            step_number=_positive_int(record.get("step_number")),
            display_order_in_step=_positive_int(record.get("display_order_in_step")),
            is_multiple_choice=bool(record.get("is_multiple_choice", False)),
            allow_multiple_selections=bool(record.get("allow_multiple_selections", False)),
            is_required=bool(record.get("is_required", True)),
            answer_options=list(options) if isinstance(options, list) else [],
            answer_images=[str(item or "") for item in images] if isinstance(images, list) else [],
            has_helper_video=bool(record.get("has_helper_video", False)),
            helper_video_url=record.get("helper_video_url") or None,
            status=status if status in STATUSES else STATUS_ACTIVE,
            is_deleted=bool(record.get("is_deleted", False)),
            conditional_display=dict(display) if isinstance(display, Mapping) else None,
            extra={key: value for key, value in record.items() if key not in known},
        )

    def to_record(self) -> Dict[str, Any]:
        """Return the persisted attribute mapping for this question."""

        record: Dict[str, Any] = dict(self.extra)
        for item in fields(self):
            if item.name == "extra":
                continue
            value = getattr(self, item.name)
            if isinstance(value, list):
                value = list(value)
            elif isinstance(value, dict):
                value = dict(value)
            record[item.name] = value
        return record


def question_fields() -> Tuple[str, ...]:
    """Return the attribute names a store may update on a question."""

    return tuple(item.name for item in fields(Question) if item.name not in {"question_id", "extra"})


def sort_by_flow(questions: List[Question]) -> List[Question]:
    """Return ``questions`` ordered by step, then in-step order, then id."""

    return sorted(
        questions,
        key=lambda item: (item.step_number, item.display_order_in_step, item.question_id),
    )


__all__ = [
    "Condition",
    "ConditionalDisplay",
    "FlowPosition",
    "OPERATORS",
    "OPERATOR_AND",
    "OPERATOR_OR",
    "Question",
    "STATUSES",
    "STATUS_ACTIVE",
    "STATUS_INACTIVE",
    "question_fields",
    "sort_by_flow",
]
