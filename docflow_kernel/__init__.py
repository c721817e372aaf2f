"""
Docflow Kernel

Document approval workflow core with:
- Exclusive review leases (claim, heartbeat, release, stale reclaim)
- Append-only balance ledger with optimistic concurrency
- Fixed document status state machine with administrative override
- Correction numbering and settlement cascades
"""

__version__ = "0.1.0"
