"""
Workflow Kernel

Sequential sign-off for leave requests and regulatory impact assessment
tracking, with:
- Tagged per-step actor rules (fixed role, assigned actor, self-assignment)
- Optimistic concurrency on every record write
- Audit append atomic with the state change
- Per-record tamper-evident hash chain
"""

__version__ = "0.1.0"
