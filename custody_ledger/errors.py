"""
Ledger Error Types

Every business failure raised by the ledger carries the values needed to
diagnose it (attempted/available, amount/limit, ...). Callers catch the
specific class; the API layer maps them to HTTP responses via to_dict().
"""

from typing import Any, Dict


class LedgerError(Exception):
    """Base class for all ledger failures"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        """Stable error name used on the wire"""
        return type(self).__name__

    def fields(self) -> Dict[str, Any]:
        """Diagnostic values attached to this error"""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.fields()}


# Configuration errors

class InvalidWithdrawLimit(LedgerError, ValueError):
    """Raised at construction when the withdrawal ceiling is zero"""

    def __init__(self, withdraw_limit: int = 0):
        super().__init__(f"Withdraw limit must be greater than zero, got {withdraw_limit}")
        self.withdraw_limit = withdraw_limit

    def fields(self) -> Dict[str, Any]:
        return {"withdraw_limit": self.withdraw_limit}


class InvalidBankCap(LedgerError, ValueError):
    """Raised at construction when the capacity ceiling is zero"""

    def __init__(self, bank_cap: int = 0):
        super().__init__(f"Bank cap must be greater than zero, got {bank_cap}")
        self.bank_cap = bank_cap

    def fields(self) -> Dict[str, Any]:
        return {"bank_cap": self.bank_cap}


class InvalidAmount(LedgerError, ValueError):
    """Raised when an amount is not a non-negative integer"""

    def __init__(self, amount: Any):
        super().__init__(f"Amount must be a non-negative integer, got {amount!r}")
        self.amount = amount

    def fields(self) -> Dict[str, Any]:
        return {"amount": repr(self.amount)}


# Capacity errors

class ExceedsBankCap(LedgerError):
    """Raised when a deposit would push total holdings past the bank cap"""

    def __init__(self, attempted: int, available: int):
        super().__init__(
            f"Deposit would raise total deposits to {attempted}; "
            f"only {available} of capacity remains"
        )
        self.attempted = attempted
        self.available = available

    def fields(self) -> Dict[str, Any]:
        return {"attempted": self.attempted, "available": self.available}


# Limit and authorization errors

class ExceedsWithdrawLimit(LedgerError):
    """Raised when a single withdrawal asks for more than the per-call ceiling"""

    def __init__(self, amount: int, limit: int):
        super().__init__(f"Withdrawal of {amount} exceeds the per-withdrawal limit of {limit}")
        self.amount = amount
        self.limit = limit

    def fields(self) -> Dict[str, Any]:
        return {"amount": self.amount, "limit": self.limit}


class InsufficientBalance(LedgerError):
    """Raised when an account holds less than the requested withdrawal"""

    def __init__(self, available: int, required: int):
        super().__init__(f"Insufficient balance: available {available}, required {required}")
        self.available = available
        self.required = required

    def fields(self) -> Dict[str, Any]:
        return {"available": self.available, "required": self.required}


# Concurrency errors

class ReentrancyDetected(LedgerError):
    """Raised when a deposit or withdrawal is entered while another is in flight"""

    def __init__(self, operation: str = ""):
        message = "Reentrant call rejected"
        if operation:
            message += f" during {operation}"
        super().__init__(message)
        self.operation = operation

    def fields(self) -> Dict[str, Any]:
        return {"operation": self.operation} if self.operation else {}


# External dependency errors

class TransferFailed(LedgerError):
    """Raised when the outbound value transfer does not succeed"""

    def __init__(self, account: str, amount: int, reason: str = ""):
        message = f"Transfer of {amount} to {account} failed"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.account = account
        self.amount = amount
        self.reason = reason

    def fields(self) -> Dict[str, Any]:
        return {"account": self.account, "amount": self.amount}


class LedgerInvariantError(RuntimeError):
    """
    Internal bookkeeping violation (e.g. a subtraction that would underflow).
    Never part of a normal failure path; indicates a bug.
    """
    pass
