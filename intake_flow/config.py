"""Runtime configuration for the question store and logging."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from intake_flow.github_backend import GitHubBackend
from intake_flow.question_store import (
    DEFAULT_STORE_ROOT,
    GitHubQuestionStore,
    InMemoryQuestionStore,
    LocalQuestionStore,
    QuestionStore,
)

ENV_PREFIX = "INTAKE_FLOW_"
BACKENDS = ("local", "github", "memory")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class StoreSettings:
    """Where questions are persisted and how verbosely to log."""

    backend: str = "local"
    root: Path = DEFAULT_STORE_ROOT
    token: Optional[str] = None
    repo: Optional[str] = None
    path: str = "form_questions/{category_id}/form_questions.json"
    branch: str = "main"
    api_url: str = "https://api.github.com"
    log_level: str = "INFO"


def _secrets_dict(secrets: Any, name: str) -> Dict[str, Any]:
    """Return a mapping stored under ``name`` in ``secrets``."""

    if not isinstance(secrets, Mapping):
        return {}
    value = secrets.get(name, {})
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def load_settings(
    secrets: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> StoreSettings:
    """Build settings from a ``[store]`` secrets table, flat keys and the environment.

    The ``[store]`` table wins over flat ``store_*`` secrets, which win over
    ``INTAKE_FLOW_*`` environment variables.
    """

    secrets = secrets if secrets is not None else {}
    environ = environ if environ is not None else os.environ
    table = _secrets_dict(secrets, "store")

    def pick(key: str, default: Any = None) -> Any:
        if table.get(key) not in (None, ""):
            return table[key]
        flat = secrets.get(f"store_{key}") if isinstance(secrets, Mapping) else None
        if flat not in (None, ""):
            return flat
        env_value = environ.get(f"{ENV_PREFIX}{key.upper()}")
        if env_value not in (None, ""):
            return env_value
        return default

    defaults = StoreSettings()
    backend = str(pick("backend", defaults.backend)).strip().lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown store backend: {backend}")

    return StoreSettings(
        backend=backend,
        root=Path(pick("root", defaults.root)),
        token=pick("token"),
        repo=pick("repo"),
        path=str(pick("path", defaults.path)),
        branch=str(pick("branch", defaults.branch)),
        api_url=str(pick("api_url", defaults.api_url)),
        log_level=str(pick("log_level", defaults.log_level)).upper(),
    )


def build_question_store(settings: StoreSettings) -> QuestionStore:
    """Instantiate the store selected by ``settings``."""

    if settings.backend == "memory":
        return InMemoryQuestionStore()
    if settings.backend == "github":
        if not settings.repo:
            raise ValueError("GitHub store requires a repository")
        backend = GitHubBackend(
            token=settings.token or "",
            repo=settings.repo,
            branch=settings.branch,
            api_url=settings.api_url,
        )
        return GitHubQuestionStore(backend, settings.path)
    return LocalQuestionStore(settings.root)


def configure_logging(settings: StoreSettings) -> None:
    """Apply the configured log level to the package logger."""

    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("intake_flow").setLevel(level)


__all__ = [
    "BACKENDS",
    "StoreSettings",
    "build_question_store",
    "configure_logging",
    "load_settings",
]
