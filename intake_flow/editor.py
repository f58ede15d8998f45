"""Editor orchestration over one category's question set.

The editor keeps all UI-facing state in an explicit :class:`EditorState`
value. Every mutation awaits the question store, then updates the local list;
the flow graph is always recompiled in full from that list.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

from intake_flow.conditions import (
    denormalize,
    integrity_issues,
    option_labels,
    question_display,
)
from intake_flow.errors import IntakeFlowError, PersistenceError, UnknownQuestionError, ValidationError
from intake_flow.flow_graph import (
    ACTION_ADD_CONDITION,
    ACTION_ADD_QUESTION,
    ACTION_DELETE_QUESTION,
    ACTION_EDIT_CONDITION,
    ACTION_EDIT_QUESTION,
    ACTION_REMOVE_CONDITION,
    FlowGraph,
    compile_flow,
    target_from_conditional_node_id,
)
from intake_flow.models import (
    OPERATOR_AND,
    OPERATOR_OR,
    OPERATORS,
    Condition,
    ConditionalDisplay,
    FlowPosition,
    Question,
    sort_by_flow,
)
from intake_flow.question_store import QuestionStore

logger = logging.getLogger(__name__)


class EditorPhase(str, Enum):
    UNLOADED = "unloaded"
    LOADED = "loaded"
    MUTATING = "mutating"


def source_candidates(questions: List[Question], target: Question) -> List[Question]:
    """Return questions that may drive a condition on ``target``.

    Only non-deleted questions strictly earlier in flow order qualify.
    """

    return sort_by_flow(
        [
            question
            for question in questions
            if not question.is_deleted
            and question.question_id != target.question_id
            and question.precedes(target)
        ]
    )


def _find(questions: List[Question], question_id: str) -> Question:
    for question in questions:
        if question.question_id == question_id:
            return question
    raise UnknownQuestionError(question_id)


@dataclass
class ConditionRow:
    source_question_id: Optional[str] = None
    operator: str = OPERATOR_OR
    values: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_question_id": self.source_question_id,
            "operator": self.operator,
            "values": list(self.values),
        }


@dataclass
class ConditionDialog:
    """Editable copy of a target question's conditions.

    ``submit`` only calls back with a :class:`ConditionalDisplay` once every
    row has a source question and at least one selected value.
    """

    target_question_id: str
    candidates: List[Question]
    rows: List[ConditionRow] = field(default_factory=list)
    group_operator: str = OPERATOR_AND
    error: Optional[str] = None

    @classmethod
    def open(
        cls,
        questions: List[Question],
        target_question_id: str,
        *,
        preselected_source_id: Optional[str] = None,
    ) -> "ConditionDialog":
        target = _find(questions, target_question_id)
        display = question_display(target)
        rows = []
        group_operator = OPERATOR_AND
        if display is not None:
            group_operator = display.group_operator
            rows = [
                ConditionRow(condition.source_question_id, condition.operator, list(condition.values))
                for condition in display.conditions
            ]

        if preselected_source_id and not any(
            row.source_question_id == preselected_source_id for row in rows
        ):
            rows.append(ConditionRow(source_question_id=preselected_source_id))
        if not rows:
            rows.append(ConditionRow())

        return cls(
            target_question_id=target_question_id,
            candidates=source_candidates(questions, target),
            rows=rows,
            group_operator=group_operator,
        )

    @property
    def candidate_ids(self) -> List[str]:
        return [question.question_id for question in self.candidates]

    def _row(self, index: int) -> ConditionRow:
        try:
            return self.rows[index]
        except IndexError:
            raise IndexError(f"No condition row {index + 1}") from None

    def options_for(self, index: int) -> List[str]:
        """Return the selectable labels of row ``index``'s source question."""

        source_id = self._row(index).source_question_id
        source = next((item for item in self.candidates if item.question_id == source_id), None)
        return option_labels(source)

    def add_row(self, source_question_id: Optional[str] = None) -> ConditionRow:
        row = ConditionRow(source_question_id=source_question_id)
        self.rows.append(row)
        return row

    def remove_row(self, index: int) -> None:
        self._row(index)
        del self.rows[index]

    def set_source(self, index: int, source_question_id: Optional[str]) -> None:
        row = self._row(index)
        row.source_question_id = source_question_id or None
        allowed = set(self.options_for(index))
        row.values = [value for value in row.values if value in allowed]
        self.error = None

    def set_operator(self, index: int, operator: str) -> None:
        if operator not in OPERATORS:
            raise ValueError(f"Unsupported operator: {operator}")
        self._row(index).operator = operator

    def set_group_operator(self, operator: str) -> None:
        if operator not in OPERATORS:
            raise ValueError(f"Unsupported operator: {operator}")
        self.group_operator = operator

    def toggle_value(self, index: int, value: str) -> None:
        row = self._row(index)
        if value in row.values:
            row.values = [item for item in row.values if item != value]
        else:
            row.values = row.values + [value]
        self.error = None

    def validate(self) -> ConditionalDisplay:
        """Return the display described by the rows or raise :class:`ValidationError`."""

        if not self.rows:
            raise ValidationError("Add at least one condition")

        allowed = set(self.candidate_ids)
        conditions = []
        for index, row in enumerate(self.rows):
            label = f"Condition {index + 1}"
            if not row.source_question_id:
                raise ValidationError(f"{label}: please select a source question", index=index)
            if row.source_question_id not in allowed:
                raise ValidationError(
                    f"{label}: the source question must come before this question", index=index
                )
            if not row.values:
                raise ValidationError(f"{label}: please select at least one value", index=index)
            conditions.append(
                Condition(
                    source_question_id=row.source_question_id,
                    operator=row.operator,
                    values=tuple(dict.fromkeys(row.values)),
                )
            )
        return ConditionalDisplay(conditions=tuple(conditions), group_operator=self.group_operator)

    def submit(self, callback: Callable[[ConditionalDisplay], Any]) -> bool:
        """Validate and pass the result to ``callback``; return whether it was called."""

        try:
            display = self.validate()
        except ValidationError as exc:
            self.error = exc.message
            return False
        self.error = None
        callback(display)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_question_id": self.target_question_id,
            "candidate_ids": self.candidate_ids,
            "rows": [row.to_dict() for row in self.rows],
            "group_operator": self.group_operator,
            "error": self.error,
        }


@dataclass
class QuestionDialogState:
    mode: str
    question_id: Optional[str] = None
    position: Optional[FlowPosition] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "question_id": self.question_id,
            "position": self.position.as_dict() if self.position else None,
        }


@dataclass
class EditorState:
    """Serializable editor state for one session."""

    category_id: Optional[str] = None
    phase: EditorPhase = EditorPhase.UNLOADED
    questions: List[Question] = field(default_factory=list)
    include_inactive: bool = False
    question_dialog: Optional[QuestionDialogState] = None
    condition_dialog: Optional[ConditionDialog] = None
    last_error: Optional[str] = None
    warnings: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def busy(self) -> bool:
        return self.phase == EditorPhase.MUTATING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "phase": self.phase.value,
            "questions": [question.to_record() for question in self.questions],
            "include_inactive": self.include_inactive,
            "question_dialog": self.question_dialog.to_dict() if self.question_dialog else None,
            "condition_dialog": self.condition_dialog.to_dict() if self.condition_dialog else None,
            "last_error": self.last_error,
            "warnings": {key: list(value) for key, value in self.warnings.items()},
        }


class FlowEditor:
    """Mutation operations of the visual flow editor."""

    def __init__(self, store: QuestionStore, state: Optional[EditorState] = None) -> None:
        self.store = store
        self.state = state or EditorState()

    @property
    def graph(self) -> FlowGraph:
        return compile_flow(self.state.questions, include_inactive=self.state.include_inactive)

    def question(self, question_id: str) -> Question:
        return _find(self.state.questions, question_id)

    def _refresh(self) -> None:
        self.state.warnings = integrity_issues(self.state.questions)

    def _require_category(self) -> str:
        if self.state.category_id is None:
            raise IntakeFlowError("No category loaded")
        return self.state.category_id

    @asynccontextmanager
    async def _mutation(self, action: str) -> AsyncIterator[None]:
        previous = self.state.phase
        self.state.phase = EditorPhase.MUTATING
        self.state.last_error = None
        try:
            yield
        except PersistenceError as exc:
            logger.warning("Editor failed to %s: %s", action, exc)
            self.state.last_error = f"Failed to {action}: {exc}"
            raise
        finally:
            self.state.phase = EditorPhase.LOADED if previous != EditorPhase.UNLOADED else previous
        self._refresh()

    async def load(self, category_id: str, *, include_inactive: Optional[bool] = None) -> List[Question]:
        """Fetch the questions of ``category_id`` and reset dialogs."""

        if include_inactive is not None:
            self.state.include_inactive = include_inactive
        self.state.phase = EditorPhase.MUTATING
        self.state.last_error = None
        try:
            questions = await self.store.list_questions(
                category_id, include_inactive=self.state.include_inactive
            )
        except PersistenceError as exc:
            logger.warning("Editor failed to load %s: %s", category_id, exc)
            self.state.last_error = f"Failed to load questions: {exc}"
            self.state.phase = EditorPhase.LOADED if self.state.category_id else EditorPhase.UNLOADED
            raise

        self.state.category_id = category_id
        self.state.questions = sort_by_flow(questions)
        self.state.question_dialog = None
        self.state.condition_dialog = None
        self.state.phase = EditorPhase.LOADED
        self._refresh()
        logger.info("Loaded %d questions for %s", len(questions), category_id)
        return self.state.questions

    async def set_include_inactive(self, include_inactive: bool) -> List[Question]:
        category_id = self._require_category()
        return await self.load(category_id, include_inactive=include_inactive)

    def open_add_question(self, position: Any = None) -> QuestionDialogState:
        dialog = QuestionDialogState(
            mode="create",
            position=FlowPosition.from_value(position) if position is not None else FlowPosition(1, 1),
        )
        self.state.question_dialog = dialog
        return dialog

    def open_edit_question(self, question_id: str) -> QuestionDialogState:
        question = self.question(question_id)
        dialog = QuestionDialogState(
            mode="edit",
            question_id=question_id,
            position=FlowPosition(question.step_number, question.display_order_in_step),
        )
        self.state.question_dialog = dialog
        return dialog

    def close_dialogs(self) -> None:
        self.state.question_dialog = None
        self.state.condition_dialog = None

    async def add_question(self, fields: Mapping[str, Any], position: Any = None) -> Question:
        """Create a question at ``position`` (or the open dialog's position).

        Questions of the same step at or after an occupied slot move down one
        place so ``(step, order)`` stays unique.
        """

        category_id = self._require_category()
        if position is None and self.state.question_dialog is not None:
            position = self.state.question_dialog.position
        if position is None:
            slot = FlowPosition.from_value(
                {"step": fields.get("step_number"), "order": fields.get("display_order_in_step")}
            )
        else:
            slot = FlowPosition.from_value(position)

        record = dict(fields)
        record.pop("question_id", None)
        record.update(
            {
                "service_category_id": category_id,
                "step_number": slot.step,
                "display_order_in_step": slot.order,
            }
        )
        draft = Question.from_record(record)

        async with self._mutation("add question"):
            # Inactive questions hold slots too, even when the editor hides them.
            stored = await self._all_questions(category_id)
            to_shift: List[Question] = []
            if any(question.flow_position == (slot.step, slot.order) for question in stored):
                to_shift = sorted(
                    (
                        question
                        for question in stored
                        if question.step_number == slot.step and question.display_order_in_step >= slot.order
                    ),
                    key=lambda item: item.display_order_in_step,
                    reverse=True,
                )

            shifted: Dict[str, Question] = {}
            for question in to_shift:
                shifted[question.question_id] = await self.store.update_question(
                    question.question_id,
                    {"display_order_in_step": question.display_order_in_step + 1},
                )
            created = await self.store.create_question(draft)

            self.state.questions = sort_by_flow(
                [shifted.get(question.question_id, question) for question in self.state.questions] + [created]
            )
            self.state.question_dialog = None
        logger.info("Added question %s at step %d order %d", created.question_id, slot.step, slot.order)
        return created

    async def edit_question(self, question_id: str, changes: Mapping[str, Any]) -> Question:
        """Apply ``changes`` to ``question_id``.

        Moving a question onto a slot another question of the category
        already holds raises :class:`ValidationError`.
        """

        current = self.question(question_id)
        fields = {key: value for key, value in changes.items() if key not in {"question_id", "service_category_id"}}
        moved = "step_number" in fields or "display_order_in_step" in fields
        if moved:
            slot = FlowPosition.from_value(
                {
                    "step": fields.get("step_number", current.step_number),
                    "order": fields.get("display_order_in_step", current.display_order_in_step),
                }
            )
            fields.update({"step_number": slot.step, "display_order_in_step": slot.order})
        async with self._mutation("update question"):
            if moved and (slot.step, slot.order) != current.flow_position:
                stored = await self._all_questions(self._require_category())
                if any(
                    question.question_id != question_id and question.flow_position == (slot.step, slot.order)
                    for question in stored
                ):
                    raise ValidationError(
                        f"Step {slot.step}, position {slot.order} is already taken by another question"
                    )
            updated = await self.store.update_question(question_id, fields)
            self._replace(updated)
            self.state.question_dialog = None
        return updated

    async def delete_question(self, question_id: str) -> None:
        """Soft-delete ``question_id`` and drop it from the loaded list."""

        self.question(question_id)
        async with self._mutation("delete question"):
            await self.store.soft_delete_question(question_id)
            self.state.questions = [
                question for question in self.state.questions if question.question_id != question_id
            ]

    def open_condition_dialog(
        self, target_question_id: str, *, preselected_source_id: Optional[str] = None
    ) -> ConditionDialog:
        dialog = ConditionDialog.open(
            self.state.questions,
            target_from_conditional_node_id(target_question_id),
            preselected_source_id=preselected_source_id,
        )
        self.state.condition_dialog = dialog
        return dialog

    def connect(self, source_question_id: str, target_question_id: str) -> ConditionDialog:
        """Open the condition dialog for a drag from source to target."""

        self.question(source_question_id)
        return self.open_condition_dialog(target_question_id, preselected_source_id=source_question_id)

    async def save_condition(self, dialog: Optional[ConditionDialog] = None) -> Question:
        """Validate ``dialog`` (default: the open one) and persist its display."""

        dialog = dialog or self.state.condition_dialog
        if dialog is None:
            raise IntakeFlowError("No condition dialog is open")
        try:
            display = dialog.validate()
        except ValidationError as exc:
            dialog.error = exc.message
            raise
        updated = await self.set_conditional_display(dialog.target_question_id, display)
        self.state.condition_dialog = None
        return updated

    async def set_conditional_display(
        self, target_question_id: str, display: Optional[ConditionalDisplay]
    ) -> Question:
        target_id = target_from_conditional_node_id(target_question_id)
        self.question(target_id)
        async with self._mutation("update conditional logic"):
            updated = await self.store.update_question(target_id, {"conditional_display": denormalize(display)})
            self._replace(updated)
        return updated

    async def remove_condition(self, target_question_id: str) -> Question:
        return await self.set_conditional_display(target_question_id, None)

    async def handle_node_action(self, node_id: str, action: str) -> Any:
        """Run the editor operation advertised by a compiled graph node."""

        node = self.graph.node(node_id)
        if node is None or action not in node.data.get("actions", []):
            raise IntakeFlowError(f"Action {action!r} is not available on {node_id!r}")

        if action == ACTION_ADD_QUESTION:
            return self.open_add_question(node.data["position"])
        if action == ACTION_EDIT_QUESTION:
            return self.open_edit_question(node_id)
        if action == ACTION_DELETE_QUESTION:
            return await self.delete_question(node_id)
        if action in {ACTION_ADD_CONDITION, ACTION_EDIT_CONDITION}:
            return self.open_condition_dialog(node_id)
        if action == ACTION_REMOVE_CONDITION:
            return await self.remove_condition(node_id)
        raise IntakeFlowError(f"Unsupported action: {action}")

    async def _all_questions(self, category_id: str) -> List[Question]:
        """Return every non-deleted question of ``category_id``, inactive included."""

        return await self.store.list_questions(category_id, include_inactive=True)

    def _replace(self, updated: Question) -> None:
        self.state.questions = sort_by_flow(
            [updated if question.question_id == updated.question_id else question for question in self.state.questions]
        )


__all__ = [
    "ConditionDialog",
    "ConditionRow",
    "EditorPhase",
    "EditorState",
    "FlowEditor",
    "QuestionDialogState",
    "source_candidates",
]
