"""
Configuration Schema (``approval_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the runtime settings of the approval
workflow: database connection, logging and workflow rules.

Architecture position
---------------------
**Config layer** -- pure data definitions, no I/O.  Parsed by
``approval_config.loader``; handed out only through
``approval_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings passed to ``init_engine_from_url``."""

    url: str = "sqlite:///approvals.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class WorkflowSettings:
    """Business rules that may differ per deployment."""

    require_reject_comment: bool = True
    max_conflict_retries: int = 3


@dataclass(frozen=True)
class ApprovalSettings:
    """Root of the runtime configuration."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    source: str | None = None
