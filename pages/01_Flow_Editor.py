"""Visual editor for a category's question flow and its conditional logic."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import streamlit as st

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from Home import SELECTED_CATEGORY_STATE_KEY, get_store, select_category  # noqa: E402
from intake_flow import flow_defaults as defaults  # noqa: E402
from intake_flow.conditions import (  # noqa: E402
    NO_OPTIONS_MESSAGE,
    answer_option_records,
    describe_conditional_display,
    question_display,
)
from intake_flow.editor import ConditionDialog, EditorState, FlowEditor  # noqa: E402
from intake_flow.errors import IntakeFlowError, PersistenceError, ValidationError  # noqa: E402
from intake_flow.flow_graph import (  # noqa: E402
    ACTION_ADD_CONDITION,
    ACTION_DELETE_QUESTION,
    ACTION_EDIT_CONDITION,
    ACTION_EDIT_QUESTION,
    ACTION_REMOVE_CONDITION,
)
from intake_flow.graph_render import node_label, to_graphviz  # noqa: E402
from intake_flow.models import OPERATORS, STATUSES, Question  # noqa: E402
from intake_flow.ui_theme import apply_app_theme, condition_note, page_header  # noqa: E402

EDITOR_STATE_KEY = "flow_editor_state"
NEW_CATEGORY_STATE_KEY = "flow_editor_new_category"


def _rerun_app() -> None:
    """Trigger a Streamlit rerun using the available API."""

    if hasattr(st, "rerun"):
        st.rerun()
    elif hasattr(st, "experimental_rerun"):
        st.experimental_rerun()


def get_editor() -> FlowEditor:
    """Return a :class:`FlowEditor` bound to the session's editor state."""

    state = st.session_state.get(EDITOR_STATE_KEY)
    if not isinstance(state, EditorState):
        state = EditorState()
        st.session_state[EDITOR_STATE_KEY] = state
    return FlowEditor(get_store(), state)


def run_action(editor: FlowEditor, coroutine: Any, success: Optional[str] = None) -> bool:
    """Await an editor mutation, reporting failures in the page."""

    try:
        asyncio.run(coroutine)
    except ValidationError as exc:
        st.error(exc.message)
        return False
    except PersistenceError:
        st.error(editor.state.last_error or "The change could not be saved. Please try again.")
        return False
    except IntakeFlowError as exc:
        st.error(str(exc))
        return False
    if success:
        st.toast(success)
    return True


def parse_options(text: str) -> List[str]:
    """Return one option label per non-blank line of ``text``."""

    return [line.strip() for line in text.splitlines() if line.strip()]


def render_question_dialog(editor: FlowEditor) -> None:
    dialog = editor.state.question_dialog
    if dialog is None:
        return

    question: Optional[Question] = editor.question(dialog.question_id) if dialog.question_id else None
    title = "Edit question" if question else "Add new question"
    position = dialog.position
    with st.form("question_dialog"):
        st.subheader(title)
        if position is not None:
            st.caption(f"Step {position.step}, position {position.order}")
        text = st.text_input("Question", value=question.question_text if question else "")
        is_multiple_choice = st.checkbox(
            "Multiple choice", value=question.is_multiple_choice if question else True
        )
        allow_multiple = st.checkbox(
            "Allow multiple selections",
            value=question.allow_multiple_selections if question else False,
        )
        is_required = st.checkbox("Required", value=question.is_required if question else True)
        status = st.selectbox(
            "Status",
            options=list(STATUSES),
            index=list(STATUSES).index(question.status) if question else 0,
        )
        existing = "\n".join(record["text"] for record in answer_option_records(question)) if question else ""
        options_text = st.text_area("Answer options (one per line)", value=existing)
        col_save, col_cancel = st.columns(2)
        submitted = col_save.form_submit_button("Save", type="primary")
        cancelled = col_cancel.form_submit_button("Cancel")

    if cancelled:
        editor.close_dialogs()
        _rerun_app()
    if not submitted:
        return
    if not text.strip():
        st.error("Question text is required.")
        return

    fields: Dict[str, Any] = {
        "question_text": text.strip(),
        "is_multiple_choice": is_multiple_choice,
        "allow_multiple_selections": is_multiple_choice and allow_multiple,
        "is_required": is_required,
        "status": status,
        "answer_options": parse_options(options_text) if is_multiple_choice else [],
    }
    if question is not None:
        saved = run_action(editor, editor.edit_question(question.question_id, fields), "Question updated")
    else:
        saved = run_action(editor, editor.add_question(fields), "Question added")
    if saved:
        _rerun_app()


def render_condition_row(dialog: ConditionDialog, index: int, lookup: Dict[str, Question]) -> None:
    row = dialog.rows[index]
    choices = [""] + dialog.candidate_ids
    current = row.source_question_id if row.source_question_id in choices else ""
    col_source, col_operator, col_remove = st.columns([4, 2, 1])
    source = col_source.selectbox(
        f"Condition {index + 1}: source question",
        options=choices,
        index=choices.index(current),
        format_func=lambda key: lookup[key].question_text if key in lookup else defaults.UNSELECTED_LABEL,
        key=f"cond_source_{dialog.target_question_id}_{index}",
    )
    if source != current:
        dialog.set_source(index, source)
    operator = col_operator.radio(
        "Match",
        options=list(OPERATORS),
        index=list(OPERATORS).index(row.operator),
        format_func=lambda value: "Any of" if value == "OR" else "All of",
        horizontal=True,
        key=f"cond_operator_{dialog.target_question_id}_{index}",
    )
    dialog.set_operator(index, operator)
    if col_remove.button("✕", key=f"cond_remove_{dialog.target_question_id}_{index}"):
        dialog.remove_row(index)
        _rerun_app()

    options = dialog.options_for(index)
    if row.source_question_id and not options:
        st.warning(NO_OPTIONS_MESSAGE)
        return
    selected = st.multiselect(
        "Show when the answer is",
        options=options,
        default=[value for value in row.values if value in options],
        key=f"cond_values_{dialog.target_question_id}_{index}_{row.source_question_id}",
    )
    row.values = list(selected)


def render_condition_dialog(editor: FlowEditor) -> None:
    dialog = editor.state.condition_dialog
    if dialog is None:
        return

    target = editor.question(dialog.target_question_id)
    lookup = {question.question_id: question for question in dialog.candidates}
    with st.container(border=True):
        st.subheader("Configure conditional logic")
        st.caption(f"Define when “{target.question_text}” should be displayed.")
        if not dialog.candidates:
            st.warning(
                "There are no earlier questions that can be used for conditional logic. "
                "Add questions before this one first."
            )
        for index in range(len(dialog.rows)):
            render_condition_row(dialog, index, lookup)
        if len(dialog.rows) > 1:
            group = st.radio(
                "Combine conditions with",
                options=list(OPERATORS),
                index=list(OPERATORS).index(dialog.group_operator),
                horizontal=True,
                key=f"cond_group_{dialog.target_question_id}",
            )
            dialog.set_group_operator(group)
        if dialog.error:
            st.error(dialog.error)
        st.caption("When conditions are not met, this question will be hidden from the form.")

        col_add, col_save, col_cancel = st.columns(3)
        if col_add.button("Add condition"):
            dialog.add_row()
            _rerun_app()
        if col_save.button("Save", type="primary"):
            if run_action(editor, editor.save_condition(dialog), "Conditional logic saved"):
                _rerun_app()
        if col_cancel.button("Cancel", key="cond_cancel"):
            editor.close_dialogs()
            _rerun_app()


def render_node_actions(editor: FlowEditor) -> None:
    """Render one row of buttons per graph node, mirroring node click handlers."""

    questions = {question.question_id: question for question in editor.state.questions}
    for node in editor.graph.nodes:
        actions = node.data.get("actions", [])
        if node.type == defaults.ADD_NODE:
            if st.button(f"Add question here ({node_label(node)})", key=f"node_{node.id}"):
                editor.open_add_question(node.data["position"])
                _rerun_app()
            continue

        columns = st.columns([5, 1, 1, 1])
        columns[0].markdown(node_label(node))
        if node.type == defaults.QUESTION_NODE:
            display = question_display(questions[node.id])
            if display is not None:
                with columns[0]:
                    condition_note(
                        describe_conditional_display(display, questions.values()),
                        broken=node.id in editor.state.warnings,
                    )
        buttons = [
            (ACTION_EDIT_QUESTION, "Edit"),
            (ACTION_DELETE_QUESTION, "Delete"),
            (ACTION_ADD_CONDITION, "Condition"),
            (ACTION_EDIT_CONDITION, "Edit"),
            (ACTION_REMOVE_CONDITION, "Remove"),
        ]
        slot = 1
        for action, label in buttons:
            if action not in actions:
                continue
            if columns[slot].button(label, key=f"node_{node.id}_{action}"):
                if run_action(editor, editor.handle_node_action(node.id, action)):
                    _rerun_app()
            slot += 1


def render_connect(editor: FlowEditor) -> None:
    question_ids = [question.question_id for question in editor.state.questions]
    if len(question_ids) < 2:
        return
    labels = {question.question_id: question.question_text for question in editor.state.questions}
    with st.expander("Connect questions"):
        col_source, col_target = st.columns(2)
        source = col_source.selectbox("From", question_ids, format_func=labels.get, key="connect_source")
        target = col_target.selectbox("To", question_ids, format_func=labels.get, key="connect_target")
        if st.button("Create condition"):
            try:
                editor.connect(source, target)
            except IntakeFlowError as exc:
                st.error(str(exc))
            else:
                _rerun_app()


def main() -> None:
    """Render the flow editor page."""

    apply_app_theme(page_title="Flow editor", page_icon="🛠️")
    page_header(
        "Flow editor",
        "Add questions, then add conditions to create branching logic.",
        icon="🛠️",
    )

    editor = get_editor()
    with st.sidebar:
        new_category = st.text_input("New category id")
        if st.button("Start new category") and new_category.strip():
            st.session_state[NEW_CATEGORY_STATE_KEY] = new_category.strip()

    pending = st.session_state.get(NEW_CATEGORY_STATE_KEY)
    if pending:
        category_id = pending
        st.caption(f"New category: {pending}")
    else:
        category_id = select_category(editor.store, key="editor_category_select")
    if not category_id:
        return

    show_inactive = st.toggle("Show inactive questions", value=editor.state.include_inactive)
    if category_id != editor.state.category_id or show_inactive != editor.state.include_inactive:
        run_action(editor, editor.load(category_id, include_inactive=show_inactive))
    st.session_state[SELECTED_CATEGORY_STATE_KEY] = category_id
    if pending and editor.state.questions:
        st.session_state.pop(NEW_CATEGORY_STATE_KEY, None)

    for question_id, messages in editor.state.warnings.items():
        st.warning(f"Condition on {question_id} can never be met: {'; '.join(messages)}")

    if not editor.state.questions:
        st.info("This category doesn't have any questions yet.")
        if st.button("Add first question", type="primary"):
            editor.open_add_question({"step": 1, "order": 1})
            _rerun_app()

    col_graph, col_panel = st.columns([3, 2])
    with col_graph:
        if editor.state.questions:
            st.graphviz_chart(to_graphviz(editor.graph), use_container_width=True)
    with col_panel:
        render_question_dialog(editor)
        render_condition_dialog(editor)
        render_node_actions(editor)
        render_connect(editor)


if __name__ == "__main__":
    main()
