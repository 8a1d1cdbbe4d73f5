"""
Custody Ledger Engine

Holds per-account balances under a fixed capacity ceiling and releases value
back to account holders under a fixed per-withdrawal ceiling.

Every deposit and withdrawal runs inside a single non-reentrant section.
Withdrawals follow checks -> effects -> interaction: validation first, then
the bookkeeping is committed, then value is sent through the transfer
gateway. A failed transfer rolls the bookkeeping back to the pre-call state,
so from the outside an operation either fully happens or not at all.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .errors import (
    LedgerError, InvalidWithdrawLimit, InvalidBankCap, InvalidAmount,
    ExceedsBankCap, ExceedsWithdrawLimit, InsufficientBalance,
    ReentrancyDetected, TransferFailed, LedgerInvariantError
)
from .events import DomainEvent, EventDispatcher, EventPayload, create_ledger_event
from .logging_config import get_logger, log_action
from .storage import InMemoryStorage, SQLiteStorage
from .transfers import TransferGateway, RecordingTransferGateway, HttpTransferGateway


def _is_unsigned(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _require_amount(amount: Any) -> None:
    if not _is_unsigned(amount):
        raise InvalidAmount(amount)


def _checked_sub(minuend: int, subtrahend: int, what: str) -> int:
    """Subtract without ever going below zero"""
    if subtrahend > minuend:
        raise LedgerInvariantError(f"{what} underflow: {minuend} - {subtrahend}")
    return minuend - subtrahend


@dataclass(frozen=True)
class LedgerStatistics:
    """Point-in-time view of the ledger's counters and limits"""
    owner: str
    withdraw_limit: int
    bank_cap: int
    total_deposits: int
    available_capacity: int
    deposit_count: int
    withdraw_count: int
    account_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class _Snapshot:
    """Pre-effect state of everything a withdrawal may touch"""
    account: str
    balance: Optional[int]  # None if the account had no entry
    total_deposited: int
    deposit_count: int
    withdraw_count: int


class CustodyLedger:
    """
    Custodial ledger with a capacity ceiling, a per-withdrawal ceiling and
    reentrancy exclusion around deposits and withdrawals.

    Invariants (whenever no operation is in flight):
        total_deposits() == sum of all balances
        total_deposits() <= bank_cap
        every balance >= 0
    """

    def __init__(
        self,
        withdraw_limit: int,
        bank_cap: int,
        owner: str,
        transfer_gateway: Optional[TransferGateway] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        audit_trail: Optional[AuditTrail] = None
    ):
        if not _is_unsigned(withdraw_limit) or withdraw_limit == 0:
            raise InvalidWithdrawLimit(withdraw_limit)
        if not _is_unsigned(bank_cap) or bank_cap == 0:
            raise InvalidBankCap(bank_cap)

        self._withdraw_limit = withdraw_limit
        self._bank_cap = bank_cap
        self._owner = owner

        self._balances: Dict[str, int] = {}
        self._total_deposited = 0
        self._deposit_count = 0
        self._withdraw_count = 0

        # Held for the duration of a deposit or withdrawal; never waited on
        self._lock = threading.Lock()

        self.transfer_gateway = transfer_gateway or RecordingTransferGateway()
        self.event_dispatcher = event_dispatcher or EventDispatcher()
        self.audit_trail = audit_trail
        self.logger = get_logger("custody.ledger")

        self._audit(
            AuditEventType.LEDGER_CREATED, "ledger", owner,
            {"withdraw_limit": withdraw_limit, "bank_cap": bank_cap},
            user_id=owner
        )
        log_action(
            self.logger, "info", "Ledger created",
            user_id=owner, action="create_ledger",
            extra={"withdraw_limit": withdraw_limit, "bank_cap": bank_cap}
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[LedgerConfig] = None,
        transfer_gateway: Optional[TransferGateway] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ) -> 'CustodyLedger':
        """Build a ledger and its collaborators from configuration"""
        config = config or get_config()

        if transfer_gateway is None and config.transfer_gateway_url:
            transfer_gateway = HttpTransferGateway(
                base_url=config.transfer_gateway_url,
                timeout=config.transfer_timeout,
                api_key=config.transfer_api_key or None
            )

        audit_trail = None
        if config.audit_enabled:
            if config.audit_database_path:
                storage = SQLiteStorage(config.audit_database_path)
            else:
                storage = InMemoryStorage()
            audit_trail = AuditTrail(storage)

        return cls(
            withdraw_limit=config.withdraw_limit,
            bank_cap=config.bank_cap,
            owner=config.owner,
            transfer_gateway=transfer_gateway,
            event_dispatcher=event_dispatcher,
            audit_trail=audit_trail
        )

    # ------------------------------------------------------------------
    # Immutable configuration
    # ------------------------------------------------------------------

    @property
    def withdraw_limit(self) -> int:
        return self._withdraw_limit

    @property
    def bank_cap(self) -> int:
        return self._bank_cap

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def locked(self) -> bool:
        """True while a deposit or withdrawal is executing"""
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def deposit(self, amount: int, caller: str) -> None:
        """
        Credit `amount` to the caller's balance.

        Raises:
            InvalidAmount: amount is not a non-negative integer
            ReentrancyDetected: another deposit/withdrawal is in flight
            ExceedsBankCap: total deposits would exceed the bank cap
        """
        _require_amount(amount)
        staged: List[EventPayload] = []

        with self._non_reentrant("deposit"):
            attempted = self._total_deposited + amount
            if attempted > self._bank_cap:
                self._reject(
                    AuditEventType.DEPOSIT_REJECTED, caller, amount,
                    ExceedsBankCap(attempted=attempted, available=self._bank_cap - self._total_deposited)
                )

            # A failing audit write undoes the effects
            with self._rollback_on_failure(caller):
                self._balances[caller] = self._balances.get(caller, 0) + amount
                self._total_deposited += amount
                self._deposit_count += 1

                balance = self._balances[caller]
                self._audit(
                    AuditEventType.DEPOSIT_ACCEPTED, "account", caller,
                    {"amount": amount, "balance": balance, "total_deposits": self._total_deposited},
                    user_id=caller
                )

            staged.append(create_ledger_event(DomainEvent.DEPOSIT, caller, amount))
            log_action(
                self.logger, "info", f"Deposit accepted: {amount}",
                user_id=caller, action="deposit", resource=f"account:{caller}",
                extra={"amount": amount, "balance": balance, "total_deposits": self._total_deposited}
            )

        self._deliver(staged)

    def withdraw(self, amount: int, caller: str) -> None:
        """
        Debit `amount` from the caller's balance and send it to the caller.

        Bookkeeping and its audit record are committed before the transfer
        gateway is invoked. If the audit write or the transfer fails, or the
        transfer is interrupted, the bookkeeping is restored and no
        notification is delivered.

        Raises:
            InvalidAmount: amount is not a non-negative integer
            ReentrancyDetected: another deposit/withdrawal is in flight
            ExceedsWithdrawLimit: amount is above the per-withdrawal limit
            InsufficientBalance: the caller holds less than amount
            TransferFailed: the gateway refused or errored; state is unchanged
        """
        _require_amount(amount)
        staged: List[EventPayload] = []

        with self._non_reentrant("withdraw"):
            # Checks
            if amount > self._withdraw_limit:
                self._reject(
                    AuditEventType.WITHDRAWAL_REJECTED, caller, amount,
                    ExceedsWithdrawLimit(amount=amount, limit=self._withdraw_limit)
                )

            user_balance = self._balances.get(caller, 0)
            if user_balance < amount:
                self._reject(
                    AuditEventType.WITHDRAWAL_REJECTED, caller, amount,
                    InsufficientBalance(available=user_balance, required=amount)
                )

            try:
                with self._rollback_on_failure(caller):
                    # Effects
                    self._balances[caller] = _checked_sub(user_balance, amount, "account balance")
                    self._total_deposited = _checked_sub(self._total_deposited, amount, "total deposits")
                    self._withdraw_count += 1
                    balance = self._balances[caller]
                    staged.append(create_ledger_event(DomainEvent.WITHDRAW, caller, amount))

                    # Recorded before any value moves; a failed transfer is
                    # recorded as TRANSFER_FAILED right after it
                    self._audit(
                        AuditEventType.WITHDRAWAL_COMMITTED, "account", caller,
                        {"amount": amount, "balance": balance, "total_deposits": self._total_deposited},
                        user_id=caller
                    )

                    # Interaction
                    self._transfer_out(caller, amount)
            except TransferFailed as error:
                staged.clear()
                self._audit(
                    AuditEventType.TRANSFER_FAILED, "account", caller,
                    {"amount": amount, "reason": error.reason, "rolled_back": True},
                    user_id=caller
                )
                log_action(
                    self.logger, "error", f"Transfer failed, withdrawal rolled back: {error.message}",
                    user_id=caller, action="withdraw", resource=f"account:{caller}",
                    extra={"amount": amount, "reason": error.reason}
                )
                raise

            log_action(
                self.logger, "info", f"Withdrawal completed: {amount}",
                user_id=caller, action="withdraw", resource=f"account:{caller}",
                extra={"amount": amount, "balance": balance, "total_deposits": self._total_deposited}
            )

        self._deliver(staged)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def total_deposits(self) -> int:
        return self._total_deposited

    def deposit_count(self) -> int:
        return self._deposit_count

    def withdraw_count(self) -> int:
        return self._withdraw_count

    def get_statistics(self) -> LedgerStatistics:
        return LedgerStatistics(
            owner=self._owner,
            withdraw_limit=self._withdraw_limit,
            bank_cap=self._bank_cap,
            total_deposits=self._total_deposited,
            available_capacity=self._bank_cap - self._total_deposited,
            deposit_count=self._deposit_count,
            withdraw_count=self._withdraw_count,
            account_count=len(self._balances)
        )

    def check_invariants(self) -> None:
        """Raise LedgerInvariantError if the bookkeeping is inconsistent"""
        if any(balance < 0 for balance in self._balances.values()):
            raise LedgerInvariantError("negative account balance")
        total = sum(self._balances.values())
        if total != self._total_deposited:
            raise LedgerInvariantError(
                f"total deposits {self._total_deposited} != sum of balances {total}"
            )
        if self._total_deposited > self._bank_cap:
            raise LedgerInvariantError(
                f"total deposits {self._total_deposited} exceed bank cap {self._bank_cap}"
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _non_reentrant(self, operation: str):
        """Exclusion shared by deposit and withdraw; released on every exit path"""
        if not self._lock.acquire(blocking=False):
            self.logger.warning(f"Reentrant {operation} rejected")
            raise ReentrancyDetected(operation)
        try:
            yield
        finally:
            self._lock.release()

    @contextmanager
    def _rollback_on_failure(self, account: str):
        """Restore the pre-effect state if anything inside the block fails"""
        snapshot = _Snapshot(
            account=account,
            balance=self._balances.get(account),
            total_deposited=self._total_deposited,
            deposit_count=self._deposit_count,
            withdraw_count=self._withdraw_count
        )
        try:
            yield
        except BaseException:
            # Interrupts too: the debit must not outlive an aborted transfer
            if snapshot.balance is None:
                self._balances.pop(account, None)
            else:
                self._balances[account] = snapshot.balance
            self._total_deposited = snapshot.total_deposited
            self._deposit_count = snapshot.deposit_count
            self._withdraw_count = snapshot.withdraw_count
            raise

    def _transfer_out(self, account: str, amount: int) -> None:
        try:
            sent = self.transfer_gateway.send(account, amount)
        except Exception as e:
            raise TransferFailed(account, amount, reason=str(e) or type(e).__name__) from e
        if not sent:
            raise TransferFailed(account, amount, reason="gateway reported failure")

    def _reject(self, event_type: AuditEventType, caller: str, amount: int, error: LedgerError) -> None:
        """Record a failed check and raise it; state has not been touched"""
        self._audit(
            event_type, "account", caller,
            {"amount": amount, **error.to_dict()},
            user_id=caller
        )
        log_action(
            self.logger, "warning", error.message,
            user_id=caller, action=event_type.value, resource=f"account:{caller}",
            extra=error.fields()
        )
        raise error

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               metadata: Dict[str, Any], user_id: Optional[str] = None) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                user_id=user_id
            )

    def _deliver(self, events: List[EventPayload]) -> None:
        for event in events:
            self.event_dispatcher.publish(event)
