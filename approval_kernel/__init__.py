"""
Approval Kernel - multi-step report approval for back-office operations.

Turns a report instance and an ordered list of approvers into a chain of
approval records and resolves approve / reject / resubmit actions into
consistent chain state:
- Ordered approval chains keyed by (report_no, year, month)
- Retroactive skipping of bypassed approvers
- Truncation of the unacted tail on rejection
- Resubmission that preserves rejection history
- Per-chain serialization of mutating operations
"""

__version__ = "0.1.0"
