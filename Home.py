"""Streamlit home screen listing intake form categories and their questions."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List

import pandas as pd
import streamlit as st

from intake_flow.conditions import describe_conditional_display, question_display
from intake_flow.config import build_question_store, configure_logging, load_settings
from intake_flow.errors import PersistenceError
from intake_flow.models import Question, sort_by_flow
from intake_flow.question_store import QuestionStore
from intake_flow.ui_theme import apply_app_theme, page_header

SELECTED_CATEGORY_STATE_KEY = "selected_category_id"
TABLE_COLUMNS = ("Step", "Order", "Question", "Type", "Required", "Status", "Shown when")


def load_secrets() -> Dict[str, Any]:
    """Return Streamlit secrets as a plain mapping, or ``{}`` without a secrets file."""

    try:
        return {key: st.secrets[key] for key in st.secrets.keys()}
    except FileNotFoundError:
        return {}


# Pages import ``get_store`` from this module so all of them share one store.
@st.cache_resource(show_spinner=False)
def get_store() -> QuestionStore:
    """Return the configured question store."""

    settings = load_settings(load_secrets())
    configure_logging(settings)
    return build_question_store(settings)


def _question_type(question: Question) -> str:
    if not question.is_multiple_choice:
        return "Free text"
    if question.allow_multiple_selections:
        return "Multi-select"
    return "Single choice"


def question_table(questions: Iterable[Question]) -> pd.DataFrame:
    """Return a flow-ordered overview table of ``questions``."""

    pool = list(questions)
    rows: List[Dict[str, Any]] = []
    for question in sort_by_flow(pool):
        rows.append(
            {
                "Step": question.step_number,
                "Order": question.display_order_in_step,
                "Question": question.question_text,
                "Type": _question_type(question),
                "Required": "Yes" if question.is_required else "No",
                "Status": question.status.title(),
                "Shown when": describe_conditional_display(question_display(question), pool),
            }
        )
    return pd.DataFrame(rows, columns=list(TABLE_COLUMNS))


def select_category(store: QuestionStore, *, key: str = "home_category_select") -> str:
    """Render a category picker and remember the selection across pages."""

    try:
        categories = asyncio.run(store.list_categories())
    except PersistenceError as exc:
        st.error(f"Could not load categories: {exc}")
        return ""

    if not categories:
        st.info("No categories yet. Start one from the flow editor sidebar.")
        return ""

    labels = {category.category_id: category.name for category in categories}
    options = list(labels)
    selected = st.session_state.get(SELECTED_CATEGORY_STATE_KEY)
    if selected not in options:
        selected = options[0]
    choice = st.selectbox(
        "Service category",
        options=options,
        index=options.index(selected),
        format_func=lambda value: labels.get(value, value),
        key=key,
    )
    st.session_state[SELECTED_CATEGORY_STATE_KEY] = choice
    return choice


def main() -> None:
    apply_app_theme(page_title="Intake flows", page_icon="🧭")
    page_header(
        "Intake flows",
        "Review the questions of each service category and how they depend on each other.",
        icon="🧭",
    )

    store = get_store()
    category_id = select_category(store)
    if not category_id:
        return

    show_inactive = st.toggle("Show inactive questions", value=False)
    try:
        questions = asyncio.run(store.list_questions(category_id, include_inactive=show_inactive))
    except PersistenceError as exc:
        st.error(f"Could not load questions: {exc}")
        return

    if not questions:
        st.info("This category doesn't have any questions yet.")
    else:
        steps = sorted({question.step_number for question in questions})
        col_questions, col_steps, col_conditional = st.columns(3)
        col_questions.metric("Questions", len(questions))
        col_steps.metric("Steps", len(steps))
        col_conditional.metric(
            "Conditional",
            sum(1 for question in questions if question_display(question) is not None),
        )
        st.dataframe(question_table(questions), hide_index=True, use_container_width=True)

    col_editor, col_form = st.columns(2)
    with col_editor:
        if st.button("Open flow editor", type="primary"):
            st.switch_page("pages/01_Flow_Editor.py")
    with col_form:
        if st.button("Preview quote form"):
            st.switch_page("pages/02_Quote_Form.py")


if __name__ == "__main__":
    main()
