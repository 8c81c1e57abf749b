"""
Obligation Kernel

Distributes a root person's debt or credit across their descendant tree and
reconciles payments against the resulting per-descendant balances:
- Exact Decimal splitting with largest-remainder rounding
- Idempotent, resumable distribution runs with explicit revisions
- Row-locked, savepoint-atomic payment reconciliation
- Append-only payment ledger
"""

__version__ = "0.1.0"
