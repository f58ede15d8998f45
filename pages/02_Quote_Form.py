"""Step-by-step preview of the customer quote form with conditional questions."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List

import streamlit as st

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from Home import get_store, select_category  # noqa: E402
from intake_flow.conditions import option_labels  # noqa: E402
from intake_flow.errors import PersistenceError  # noqa: E402
from intake_flow.flow_defaults import UNSELECTED_LABEL  # noqa: E402
from intake_flow.models import Question  # noqa: E402
from intake_flow.ui_theme import apply_app_theme, page_header  # noqa: E402
from intake_flow.visibility import missing_required_answers, visible_questions  # noqa: E402

ANSWERS_STATE_KEY = "quote_form_answers"
STEP_STATE_KEY = "quote_form_step"


def render_question(question: Question, answers: Dict[str, Any], error: str = "") -> None:
    """Render the answer widget for ``question`` and record the answer."""

    label = f"{question.question_text}{' *' if question.is_required else ''}"
    widget_key = f"quote_{question.question_id}"
    current = answers.get(question.question_id)

    if not question.is_multiple_choice:
        value = st.text_input(label, value=current if isinstance(current, str) else "", key=widget_key)
        if value.strip():
            answers[question.question_id] = value.strip()
        else:
            answers.pop(question.question_id, None)
    elif question.allow_multiple_selections:
        options = option_labels(question)
        default = [item for item in current if item in options] if isinstance(current, list) else []
        answers[question.question_id] = st.multiselect(label, options=options, default=default, key=widget_key)
    else:
        choices = [UNSELECTED_LABEL, *option_labels(question)]
        index = choices.index(current) if current in choices else 0
        selection = st.radio(label, choices, index=index, key=widget_key)
        if selection == UNSELECTED_LABEL:
            answers.pop(question.question_id, None)
        else:
            answers[question.question_id] = selection

    if error:
        st.error(error)


def main() -> None:
    """Render the quote form preview page."""

    apply_app_theme(page_title="Quote form preview", page_icon="📝")
    page_header(
        "Quote form preview",
        "Questions appear or disappear automatically depending on earlier answers.",
        icon="📝",
    )

    store = get_store()
    category_id = select_category(store, key="quote_category_select")
    if not category_id:
        return

    try:
        questions = asyncio.run(store.list_questions(category_id))
    except PersistenceError as exc:
        st.error(f"Could not load questions: {exc}")
        return
    if not questions:
        st.info("This category doesn't have any questions yet.")
        return

    all_answers: Dict[str, Dict[str, Any]] = st.session_state.setdefault(ANSWERS_STATE_KEY, {})
    answers = all_answers.setdefault(category_id, {})
    steps: List[int] = sorted({question.step_number for question in questions})
    step_index = min(st.session_state.get(STEP_STATE_KEY, 0), len(steps) - 1)
    step = steps[step_index]
    st.progress((step_index + 1) / len(steps), text=f"Step {step_index + 1} of {len(steps)}")

    errors = st.session_state.pop(f"{STEP_STATE_KEY}_errors", {})
    shown = visible_questions(questions, answers, step=step)
    if not shown:
        st.info("No questions apply to this step based on your answers.")
    for question in shown:
        render_question(question, answers, errors.get(question.question_id, ""))

    col_previous, col_next = st.columns(2)
    if step_index > 0 and col_previous.button("Previous"):
        st.session_state[STEP_STATE_KEY] = step_index - 1
        st.rerun()
    next_label = "Next" if step_index + 1 < len(steps) else "Finish"
    if col_next.button(next_label, type="primary"):
        step_ids = {question.question_id for question in shown}
        missing = {
            question_id: message
            for question_id, message in missing_required_answers(questions, answers).items()
            if question_id in step_ids
        }
        if missing:
            st.session_state[f"{STEP_STATE_KEY}_errors"] = missing
        elif step_index + 1 < len(steps):
            st.session_state[STEP_STATE_KEY] = step_index + 1
        else:
            st.success("All required questions answered.")
            return
        st.rerun()

    with st.expander("Debug: current answers"):
        st.json(answers)


if __name__ == "__main__":
    main()
