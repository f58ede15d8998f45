"""Tests for the flow editor orchestration."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict

import pytest

from intake_flow.editor import ConditionDialog, EditorPhase, EditorState, FlowEditor, source_candidates
from intake_flow.errors import IntakeFlowError, PersistenceError, ValidationError
from intake_flow.flow_graph import (
    ACTION_ADD_QUESTION,
    ACTION_DELETE_QUESTION,
    ACTION_REMOVE_CONDITION,
)
from intake_flow.models import Question
from intake_flow.question_store import InMemoryQuestionStore

CATEGORY = "boilers"


def _question(question_id: str, step: int, order: int, **overrides) -> Question:
    record: Dict[str, Any] = {
        "question_id": question_id,
        "question_text": f"Question {question_id}",
        "service_category_id": CATEGORY,
        "step_number": step,
        "display_order_in_step": order,
        "is_multiple_choice": True,
        "answer_options": ["Gas", "Electric", "LPG"],
    }
    record.update(overrides)
    return Question.from_record(record)


def _stored(store: InMemoryQuestionStore) -> Dict[str, Dict[str, Any]]:
    return {record["question_id"]: record for record in store.documents[CATEGORY]["questions"]}


class FailingStore(InMemoryQuestionStore):
    """In-memory store whose writes always fail."""

    async def _save(self, category_id, document, message):  # type: ignore[override]
        raise OSError("disk full")


@pytest.fixture
def questions():
    return [
        _question("q1", 1, 1),
        _question("q2", 1, 2),
        _question("q3", 1, 3),
        _question("q4", 2, 1),
    ]


@pytest.fixture
def store(questions):
    return InMemoryQuestionStore.from_questions(CATEGORY, questions, name="Boilers")


@pytest.fixture
def editor(store):
    editor = FlowEditor(store)
    asyncio.run(editor.load(CATEGORY))
    return editor


def test_load_populates_state_in_flow_order(store) -> None:
    """Loading a category fills the editor state in flow order."""

    editor = FlowEditor(store)
    assert editor.state.phase is EditorPhase.UNLOADED

    loaded = asyncio.run(editor.load(CATEGORY))

    assert [question.question_id for question in loaded] == ["q1", "q2", "q3", "q4"]
    assert editor.state.phase is EditorPhase.LOADED
    assert not editor.state.busy
    assert editor.graph.node_ids[:3] == ["q1", "q2", "q3"]


def test_add_question_into_occupied_slot_shifts_later_questions(editor, store) -> None:
    """Inserting into a taken slot moves later questions of the step down."""

    created = asyncio.run(
        editor.add_question({"question_text": "New", "is_multiple_choice": False}, {"step": 1, "order": 2})
    )

    positions = {question.question_id: question.flow_position for question in editor.state.questions}
    assert positions == {
        "q1": (1, 1),
        created.question_id: (1, 2),
        "q2": (1, 3),
        "q3": (1, 4),
        "q4": (2, 1),
    }
    stored = _stored(store)
    assert stored["q2"]["display_order_in_step"] == 3
    assert stored["q3"]["display_order_in_step"] == 4
    assert stored[created.question_id]["service_category_id"] == CATEGORY


def test_add_question_at_end_of_step_leaves_others_alone(editor, store) -> None:
    """Adding after the last question shifts nothing."""

    editor.open_add_question({"step": 1, "order": 4})
    created = asyncio.run(editor.add_question({"question_text": "Last"}))

    assert created.flow_position == (1, 4)
    assert editor.state.question_dialog is None
    assert _stored(store)["q3"]["display_order_in_step"] == 3


def test_add_question_requires_loaded_category(store) -> None:
    """Questions cannot be added before a category is loaded."""

    with pytest.raises(IntakeFlowError):
        asyncio.run(FlowEditor(store).add_question({"question_text": "Orphan"}))


def test_source_candidates_are_strictly_earlier(questions) -> None:
    """Only earlier, non-deleted questions may drive a condition."""

    deleted = _question("q0", 1, 1, is_deleted=True)
    pool = questions + [deleted]

    assert [item.question_id for item in source_candidates(pool, questions[2])] == ["q1", "q2"]
    assert source_candidates(pool, questions[0]) == []


def test_condition_dialog_blocks_incomplete_rows(editor) -> None:
    """The dialog only submits once every row has a source and values."""

    dialog = editor.open_condition_dialog("q3")
    calls = []

    assert dialog.candidate_ids == ["q1", "q2"]
    assert len(dialog.rows) == 1
    assert not dialog.submit(calls.append)
    assert dialog.error == "Condition 1: please select a source question"

    dialog.set_source(0, "q1")
    assert dialog.options_for(0) == ["Gas", "Electric", "LPG"]
    assert not dialog.submit(calls.append)
    assert dialog.error == "Condition 1: please select at least one value"

    dialog.add_row("q4")
    dialog.toggle_value(0, "Gas")
    with pytest.raises(ValidationError) as excinfo:
        dialog.validate()
    assert excinfo.value.index == 1
    assert "must come before" in excinfo.value.message

    dialog.remove_row(1)
    assert dialog.submit(calls.append)
    assert dialog.error is None
    assert len(calls) == 1
    assert calls[0].conditions[0].values == ("Gas",)


def test_changing_source_drops_values_it_does_not_offer(editor) -> None:
    """Switching a row's source keeps only values the new source offers."""

    asyncio.run(editor.edit_question("q2", {"answer_options": ["Gas", "Oil"]}))
    dialog = editor.open_condition_dialog("q3")
    dialog.set_source(0, "q1")
    dialog.toggle_value(0, "Gas")
    dialog.toggle_value(0, "LPG")

    dialog.set_source(0, "q2")

    assert dialog.rows[0].values == ["Gas"]


def test_save_condition_persists_canonical_shape(editor, store) -> None:
    """Saving the dialog stores the canonical display and adds a conditional node."""

    dialog = editor.open_condition_dialog("q3")
    dialog.set_source(0, "q1")
    dialog.toggle_value(0, "Gas")
    dialog.add_row("q2")
    dialog.set_operator(1, "AND")
    dialog.toggle_value(1, "Electric")
    dialog.set_group_operator("OR")

    asyncio.run(editor.save_condition())

    assert editor.state.condition_dialog is None
    assert _stored(store)["q3"]["conditional_display"] == {
        "conditions": [
            {"source_question_id": "q1", "operator": "OR", "values": ["Gas"]},
            {"source_question_id": "q2", "operator": "AND", "values": ["Electric"]},
        ],
        "group_operator": "OR",
    }
    assert "cond-q3" in editor.graph.node_ids


def test_save_condition_rejects_invalid_dialog_without_store_call(editor, store) -> None:
    """An invalid dialog never reaches the store."""

    editor.open_condition_dialog("q3")

    with pytest.raises(ValidationError):
        asyncio.run(editor.save_condition())

    assert editor.state.condition_dialog.error == "Condition 1: please select a source question"
    assert _stored(store)["q3"]["conditional_display"] is None


def test_connect_preselects_the_dragged_source(editor) -> None:
    """Connecting two questions opens the dialog with the source filled in."""

    dialog = editor.connect("q1", "q3")

    assert [row.source_question_id for row in dialog.rows] == ["q1"]
    assert editor.state.condition_dialog is dialog


def test_connect_reuses_existing_row_for_same_source(editor) -> None:
    """Connecting an already used source does not add a duplicate row."""

    display = {"conditions": [{"source_question_id": "q1", "operator": "OR", "values": ["Gas"]}]}
    asyncio.run(editor.edit_question("q3", {"conditional_display": display}))

    dialog = editor.connect("q1", "cond-q3")
    assert [row.to_dict() for row in dialog.rows] == [
        {"source_question_id": "q1", "operator": "OR", "values": ["Gas"]}
    ]

    dialog = editor.connect("q2", "q3")
    assert [row.source_question_id for row in dialog.rows] == ["q1", "q2"]


def test_remove_condition_from_conditional_node(editor, store) -> None:
    """The conditional node's remove action clears the stored display."""

    display = {"dependent_on_question_id": "q1", "show_when_answer_equals": ["Gas"]}
    asyncio.run(editor.edit_question("q4", {"conditional_display": display}))
    assert "cond-q4" in editor.graph.node_ids

    asyncio.run(editor.handle_node_action("cond-q4", ACTION_REMOVE_CONDITION))

    assert "cond-q4" not in editor.graph.node_ids
    assert _stored(store)["q4"]["conditional_display"] is None


def test_delete_question_flags_dependent_conditions(editor, store) -> None:
    """Deleting a source question surfaces warnings on its dependents."""

    display = {"dependent_on_question_id": "q1", "show_when_answer_equals": ["Gas"]}
    asyncio.run(editor.edit_question("q3", {"conditional_display": display}))

    asyncio.run(editor.handle_node_action("q1", ACTION_DELETE_QUESTION))

    assert "q1" not in [question.question_id for question in editor.state.questions]
    assert _stored(store)["q1"]["is_deleted"] is True
    assert "q3" in editor.state.warnings
    assert editor.graph.node("cond-q3").data["broken_sources"] == ["q1"]


def test_add_node_action_opens_question_dialog(editor) -> None:
    """Add nodes open the question dialog at their slot."""

    dialog = asyncio.run(editor.handle_node_action("add-end-1", ACTION_ADD_QUESTION))

    assert dialog.mode == "create"
    assert dialog.position.as_dict() == {"step": 1, "order": 4}
    assert editor.state.question_dialog is dialog


def test_unavailable_action_is_rejected(editor) -> None:
    """Actions a node does not advertise are refused."""

    with pytest.raises(IntakeFlowError):
        asyncio.run(editor.handle_node_action("add-end-1", ACTION_DELETE_QUESTION))
    with pytest.raises(IntakeFlowError):
        asyncio.run(editor.handle_node_action("missing", ACTION_DELETE_QUESTION))


def test_failed_mutation_keeps_local_state(questions) -> None:
    """A failing store leaves the loaded questions untouched and records the error."""

    editor = FlowEditor(FailingStore.from_questions(CATEGORY, questions))
    asyncio.run(editor.load(CATEGORY))
    before = list(editor.state.questions)

    with pytest.raises(PersistenceError):
        asyncio.run(editor.add_question({"question_text": "New"}, {"step": 1, "order": 1}))
    with pytest.raises(PersistenceError):
        asyncio.run(editor.delete_question("q2"))

    assert editor.state.questions == before
    assert editor.state.phase is EditorPhase.LOADED
    assert editor.state.last_error.startswith("Failed to delete question")


def test_editor_state_is_serializable(editor) -> None:
    """Editor state converts to plain JSON-compatible data."""

    editor.open_condition_dialog("q2")
    editor.open_add_question((2, 2))

    payload = json.loads(json.dumps(editor.state.to_dict()))

    assert payload["phase"] == "loaded"
    assert payload["condition_dialog"]["target_question_id"] == "q2"
    assert payload["question_dialog"]["position"] == {"step": 2, "order": 2}
    assert isinstance(EditorState().to_dict()["questions"], list)


def test_dialog_open_on_unknown_question_raises(questions) -> None:
    """Opening a dialog for an unknown question raises ``LookupError``."""

    with pytest.raises(LookupError):
        ConditionDialog.open(questions, "nope")


def test_add_question_shifts_hidden_inactive_questions(questions) -> None:
    """Inactive questions hidden from the editor still move out of the way."""

    pool = [questions[0], _question("q2", 1, 2, status="inactive"), questions[2]]
    store = InMemoryQuestionStore.from_questions(CATEGORY, pool)
    editor = FlowEditor(store)
    asyncio.run(editor.load(CATEGORY))
    assert [question.question_id for question in editor.state.questions] == ["q1", "q3"]

    created = asyncio.run(editor.add_question({"question_text": "New"}, {"step": 1, "order": 2}))

    slots = [
        (record["step_number"], record["display_order_in_step"])
        for record in store.documents[CATEGORY]["questions"]
        if not record["is_deleted"]
    ]
    assert len(slots) == len(set(slots))
    stored = _stored(store)
    assert stored["q2"]["display_order_in_step"] == 3
    assert stored["q3"]["display_order_in_step"] == 4
    assert stored[created.question_id]["display_order_in_step"] == 2
    assert "q2" not in [question.question_id for question in editor.state.questions]


def test_edit_question_rejects_move_onto_taken_slot(editor, store) -> None:
    """Moving a question onto another question's slot is refused."""

    with pytest.raises(ValidationError):
        asyncio.run(editor.edit_question("q2", {"display_order_in_step": 1}))

    assert _stored(store)["q2"]["display_order_in_step"] == 2
    assert editor.question("q2").flow_position == (1, 2)
    assert editor.state.phase is EditorPhase.LOADED


def test_edit_question_rejects_move_onto_inactive_question(questions) -> None:
    """Slots held by inactive questions count as taken when moving."""

    pool = questions + [_question("q5", 2, 2, status="inactive")]
    store = InMemoryQuestionStore.from_questions(CATEGORY, pool)
    editor = FlowEditor(store)
    asyncio.run(editor.load(CATEGORY))

    with pytest.raises(ValidationError):
        asyncio.run(editor.edit_question("q3", {"step_number": 2, "display_order_in_step": 2}))

    moved = asyncio.run(editor.edit_question("q3", {"step_number": 2, "display_order_in_step": 3}))
    assert moved.flow_position == (2, 3)
    assert _stored(store)["q3"]["step_number"] == 2
