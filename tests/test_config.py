"""Tests for store settings and logging configuration."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from intake_flow.config import StoreSettings, build_question_store, configure_logging, load_settings
from intake_flow.question_store import GitHubQuestionStore, InMemoryQuestionStore, LocalQuestionStore


def test_defaults_without_secrets_or_environment() -> None:
    """Without configuration the local store and default settings are used."""

    settings = load_settings({}, {})

    assert settings == StoreSettings()
    assert isinstance(build_question_store(settings), LocalQuestionStore)


def test_store_table_wins_over_flat_keys_and_environment() -> None:
    """The ``[store]`` table overrides flat secrets, which override the environment."""

    secrets = {
        "store": {"backend": "github", "repo": "acme/forms", "branch": "drafts"},
        "store_repo": "other/repo",
        "store_token": "flat-token",
    }
    environ = {"INTAKE_FLOW_BRANCH": "env-branch", "INTAKE_FLOW_LOG_LEVEL": "debug"}

    settings = load_settings(secrets, environ)

    assert settings.backend == "github"
    assert settings.repo == "acme/forms"
    assert settings.branch == "drafts"
    assert settings.token == "flat-token"
    assert settings.log_level == "DEBUG"

    store = build_question_store(settings)
    assert isinstance(store, GitHubQuestionStore)
    assert store.backend.repo == "acme/forms"
    assert store.path_template == "form_questions/{category_id}/form_questions.json"


def test_environment_selects_backend_and_root() -> None:
    """Environment variables alone can select the backend."""

    settings = load_settings({}, {"INTAKE_FLOW_BACKEND": "Memory", "INTAKE_FLOW_ROOT": "/tmp/forms"})

    assert settings.backend == "memory"
    assert settings.root == Path("/tmp/forms")
    assert isinstance(build_question_store(settings), InMemoryQuestionStore)


def test_invalid_backend_and_missing_repo_are_rejected() -> None:
    """Unknown backends and GitHub without a repository raise ``ValueError``."""

    with pytest.raises(ValueError):
        load_settings({"store": {"backend": "s3"}}, {})
    with pytest.raises(ValueError):
        build_question_store(StoreSettings(backend="github"))


def test_configure_logging_sets_package_level() -> None:
    """The package logger follows the configured level, falling back to INFO."""

    logger = logging.getLogger("intake_flow")
    previous = logger.level
    try:
        configure_logging(StoreSettings(log_level="WARNING"))
        assert logger.level == logging.WARNING

        configure_logging(StoreSettings(log_level="chatty"))
        assert logger.level == logging.INFO
    finally:
        logger.setLevel(previous)
