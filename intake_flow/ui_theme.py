"""Shared page chrome for the Streamlit surfaces."""

from __future__ import annotations

from html import escape as html_escape
from typing import Any, Optional

import streamlit as st

from intake_flow import flow_defaults as defaults

_THEME_CSS = f"""
<style>
:root {{
    --flow-accent: #2563EB;
    --flow-condition: {defaults.CONDITION_COLOR};
    --flow-muted: {defaults.LABEL_COLOR};
    --flow-border: rgba(37, 99, 235, 0.25);
}}

.flow-header {{
    display: flex;
    align-items: center;
    gap: 0.9rem;
    margin-bottom: 1.2rem;
}}

.flow-header__icon {{
    font-size: 2.2rem;
}}

.flow-header__title {{
    margin: 0;
}}

.flow-header__subtitle {{
    margin: 0.2rem 0 0;
    color: var(--flow-muted);
}}

.flow-condition {{
    border-left: 4px solid var(--flow-condition);
    padding: 0.35rem 0.75rem;
    margin: 0.25rem 0 0.75rem;
    color: var(--flow-muted);
    font-size: 0.9rem;
}}

.flow-warning {{
    border-left: 4px solid {defaults.BROKEN_COLOR};
    padding: 0.35rem 0.75rem;
    font-size: 0.9rem;
}}
</style>
"""


def apply_app_theme(page_title: str, page_icon: Optional[str] = None) -> None:
    """Set the page configuration and inject the shared CSS."""

    st.set_page_config(
        page_title=page_title,
        page_icon=page_icon,
        layout="wide",
        initial_sidebar_state="expanded",
    )
    st.markdown(_THEME_CSS, unsafe_allow_html=True)


def page_header(
    title: str,
    subtitle: Optional[str] = None,
    icon: Optional[str] = None,
    *,
    container: Optional[Any] = None,
) -> None:
    """Render a title row with an optional subtitle and icon."""

    icon_markup = f"<span class='flow-header__icon'>{icon}</span>" if icon else ""
    subtitle_markup = (
        f"<p class='flow-header__subtitle'>{html_escape(subtitle)}</p>" if subtitle else ""
    )
    target = container.markdown if container is not None else st.markdown
    target(
        f"""
        <div class="flow-header">
            {icon_markup}
            <div>
                <h1 class="flow-header__title">{html_escape(title)}</h1>
                {subtitle_markup}
            </div>
        </div>
        """,
        unsafe_allow_html=True,
    )


def condition_note(text: str, *, broken: bool = False) -> None:
    """Render a condition summary under a question."""

    css_class = "flow-warning" if broken else "flow-condition"
    st.markdown(f"<div class='{css_class}'>{html_escape(text)}</div>", unsafe_allow_html=True)
