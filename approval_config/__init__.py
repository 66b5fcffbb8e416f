"""
approval_config -- single public entrypoint for runtime settings.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads settings files or
    environment variables directly.

Architecture position:
    Configuration -- sits above ``approval_kernel``.  The kernel MUST NEVER
    import from ``approval_config``; callers (the CLI, tests, hosting
    services) read settings here and pass plain values into the kernel.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``ValueError`` -- unknown keys, wrong types or out-of-range values.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from approval_config.loader import load_settings, parse_settings
from approval_config.schema import (
    ApprovalSettings,
    DatabaseSettings,
    LoggingSettings,
    WorkflowSettings,
)

_logger = logging.getLogger("approval_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "APPROVAL_CONFIG"
DATABASE_URL_ENV = "DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> ApprovalSettings:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``path`` argument, then the
    ``APPROVAL_CONFIG`` environment variable, then the packaged
    ``sets/default.yaml``.  ``DATABASE_URL`` overrides ``database.url``.

    Returns:
        Frozen ``ApprovalSettings``.
    """
    source = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    settings = load_settings(source)

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        settings = replace(settings, database=replace(settings.database, url=database_url))

    _logger.info(
        "approval_config_loaded",
        extra={
            "source": str(source),
            "database_dialect": settings.database.url.split(":", 1)[0],
            "require_reject_comment": settings.workflow.require_reject_comment,
            "max_conflict_retries": settings.workflow.max_conflict_retries,
        },
    )
    return settings


__all__ = [
    "ApprovalSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "WorkflowSettings",
    "get_active_config",
    "parse_settings",
]
