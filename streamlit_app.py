"""Streamlit entrypoint wiring the home screen, flow editor and form preview."""

import streamlit as st

PAGES = (
    ("Home.py", "Intake flows", "🧭"),
    ("pages/01_Flow_Editor.py", "Flow editor", "🛠️"),
    ("pages/02_Quote_Form.py", "Quote form preview", "📝"),
)


def main() -> None:
    """Run the page selected in the sidebar navigation."""

    navigation = st.navigation(
        [st.Page(path, title=title, icon=icon, default=index == 0) for index, (path, title, icon) in enumerate(PAGES)]
    )
    navigation.run()


if __name__ == "__main__":
    main()
