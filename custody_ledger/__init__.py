"""
Custody Ledger

A custodial ledger that holds per-account balances under a global capacity
ceiling and releases value back to account holders under a per-withdrawal
ceiling, with reentrancy exclusion around every value transfer.
"""

__version__ = "1.0.0"
