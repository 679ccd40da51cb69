"""
Ledger Sync - Source Package

Keeps a personal budget ledger and one or more organization ledgers in step:
a transfer recorded on one side is mirrored as an offsetting entry on the
other, converted into the target currency.

DESIGN PRINCIPLES:
1. The source side is authoritative, mirrors are derived
2. Safe to re-run: every write is keyed by a deterministic tag
3. One decision, one log entry
4. A failure stays with the transaction (or sub-run) that caused it
5. Storage and ledger backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Sync Team"
