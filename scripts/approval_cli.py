#!/usr/bin/env python3
"""
Operator command line for the approval workflow.

Usage:
    python3 scripts/approval_cli.py [--config PATH] [--database-url URL] <command> ...

Examples:
    # Create the schema
    python3 scripts/approval_cli.py init-db

    # Start a chain for report R-100, April 2025
    python3 scripts/approval_cli.py create --report R-100 --year 2025 --month 4 \\
        --submitter alice --approver bob --approver carol --comment "monthly tonnage"

    # Approve or reject a record
    python3 scripts/approval_cli.py act --record-id <uuid> --user bob --action approve

    # Resubmit after a rejection
    python3 scripts/approval_cli.py resubmit --report R-100 --year 2025 --month 4 \\
        --submitter alice --approver bob --approver carol

    # Inspect a chain or a user's queue
    python3 scripts/approval_cli.py show --report R-100 --year 2025 --month 4 --viewer bob
    python3 scripts/approval_cli.py pending --user bob

Output is JSON on stdout.  Failures print a JSON error on stderr and exit with:
    2  validation failure or invalid state
    3  acting user is not the assigned approver
    4  record not found
    5  concurrent modification (retries exhausted)
    1  any other kernel error
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import ApprovalSettings, get_active_config
from approval_config.loader import level_number
from approval_engines.chain_view import ChainView
from approval_kernel.db.engine import (
    create_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
    run_in_transaction,
)
from approval_kernel.domain.approval import ApprovalChain, ChainKey
from approval_kernel.exceptions import (
    ApprovalKernelError,
    AuthorizationError,
    ConcurrencyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from approval_kernel.logging_config import LogContext, configure_logging
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.approval_workflow_service import ApprovalWorkflowService

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2
EXIT_FORBIDDEN = 3
EXIT_NOT_FOUND = 4
EXIT_CONFLICT = 5

_EXIT_CODES: tuple[tuple[type[ApprovalKernelError], int], ...] = (
    (ValidationError, EXIT_INVALID),
    (InvalidStateError, EXIT_INVALID),
    (AuthorizationError, EXIT_FORBIDDEN),
    (NotFoundError, EXIT_NOT_FOUND),
    (ConcurrencyError, EXIT_CONFLICT),
)


def exit_code_for(exc: ApprovalKernelError) -> int:
    for error_type, code in _EXIT_CODES:
        if isinstance(exc, error_type):
            return code
    return EXIT_ERROR


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _add_chain_key(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--report", required=True, help="Report number.")
    parser.add_argument("--year", required=True, type=int)
    parser.add_argument("--month", required=True, type=int)


def _add_participants(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--submitter", required=True, help="Submitting user name.")
    parser.add_argument(
        "--approver",
        dest="approvers",
        action="append",
        default=[],
        help="Approver user name, in flow order (repeat for each approver).",
    )
    parser.add_argument("--comment", default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Back-office approval workflow.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML file.")
    parser.add_argument("--database-url", default=None, help="Overrides database.url.")
    parser.add_argument("--correlation-id", default=None, help="Tag for log lines.")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the approval tables.")

    create = sub.add_parser("create", help="Create an approval chain.")
    _add_chain_key(create)
    _add_participants(create)

    act = sub.add_parser("act", help="Approve or reject a record.")
    act.add_argument("--record-id", required=True)
    act.add_argument("--user", required=True, help="Acting user name.")
    act.add_argument("--action", required=True, help="approve or reject.")
    act.add_argument("--comment", default=None)

    resubmit = sub.add_parser("resubmit", help="Resubmit a rejected chain.")
    _add_chain_key(resubmit)
    _add_participants(resubmit)

    show = sub.add_parser("show", help="Show a chain.")
    _add_chain_key(show)
    show.add_argument("--viewer", default=None, help="User to evaluate permissions for.")

    pending = sub.add_parser("pending", help="List records awaiting a user.")
    pending.add_argument("--user", required=True)

    return parser


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _chain_dict(chain: ApprovalChain) -> dict[str, Any]:
    return {
        "reportNo": chain.key.report_no,
        "year": chain.key.year,
        "month": chain.key.month,
        "records": [
            {**r.to_dict(), "statusLabel": r.status.label} for r in chain.records
        ],
    }


def _view_dict(view: ChainView) -> dict[str, Any]:
    direction = view.flow_direction
    return {
        **_chain_dict(view.chain),
        "viewer": view.viewer,
        "hasExistingFlow": view.has_existing_flow,
        "isRejected": view.is_rejected,
        "isCompleted": view.is_completed,
        "isApprovalTarget": view.is_approval_target,
        "canEdit": view.can_edit,
        "canResubmit": view.can_resubmit,
        "awaiting": list(view.awaiting),
        "flowDirection": {
            "flow": list(direction.flow),
            "outcome": direction.outcome.value if direction.outcome else None,
            "actionDate": direction.action_date.isoformat() if direction.action_date else None,
        },
    }


def _emit(payload: Any) -> None:
    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _run(args: argparse.Namespace, settings: ApprovalSettings) -> None:
    workflow = settings.workflow

    def service(session):
        return ApprovalWorkflowService(
            session, require_reject_comment=workflow.require_reject_comment
        )

    if args.command == "init-db":
        create_tables()
        _emit({"status": "ok"})

    elif args.command == "create":
        chain = run_in_transaction(
            lambda session: service(session).create(
                args.report, args.year, args.month,
                args.submitter, args.approvers, args.comment,
            ),
            max_attempts=workflow.max_conflict_retries,
        )
        _emit(_chain_dict(chain))

    elif args.command == "act":
        record = run_in_transaction(
            lambda session: service(session).act(
                args.record_id, args.user, args.action, args.comment,
            ),
            max_attempts=workflow.max_conflict_retries,
        )
        _emit({**record.to_dict(), "statusLabel": record.status.label})

    elif args.command == "resubmit":
        chain = run_in_transaction(
            lambda session: service(session).resubmit(
                args.report, args.year, args.month,
                args.submitter, args.approvers, args.comment,
            ),
            max_attempts=workflow.max_conflict_retries,
        )
        _emit(_chain_dict(chain))

    elif args.command == "show":
        session = get_session()
        try:
            view = ApprovalSelector(session).get_chain_view(
                ChainKey(args.report, args.year, args.month), args.viewer
            )
        finally:
            session.close()
        _emit(_view_dict(view))

    elif args.command == "pending":
        session = get_session()
        try:
            records = ApprovalSelector(session).get_pending_by_user(args.user)
        finally:
            session.close()
        _emit([r.to_dict() for r in records])


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_active_config(args.config)
    configure_logging(level=level_number(settings))

    database = settings.database
    init_engine_from_url(
        args.database_url or database.url,
        echo=database.echo,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
    )
    try:
        with LogContext.bind(correlation_id=args.correlation_id):
            _run(args, settings)
    except ApprovalKernelError as exc:
        json.dump({"error": exc.code, "message": str(exc)}, sys.stderr)
        sys.stderr.write("\n")
        return exit_code_for(exc)
    finally:
        reset_engine()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
