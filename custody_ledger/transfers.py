"""
Value Transfer Gateways

The ledger releases value through a TransferGateway. A gateway reports
success as True; False (or an exception) means no value left the custodian.
"""

import httpx
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

logger = logging.getLogger("custody.transfers")


@dataclass
class TransferRecord:
    """One outbound transfer accepted by a gateway"""
    account: str
    amount: int
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TransferGateway(ABC):
    """Moves value out of the custodian to an account holder"""

    @abstractmethod
    def send(self, account: str, amount: int) -> bool:
        """Transfer `amount` to `account`; return True only if it went through"""
        pass

    def health_check(self) -> bool:
        """Report whether transfers can currently go through"""
        return True

    def close(self) -> None:
        pass


class RecordingTransferGateway(TransferGateway):
    """
    In-process gateway that records every transfer it accepts.

    `on_send` runs before the transfer is recorded, with the same arguments as
    send(); it stands in for the receiving side, which may call back into the
    ledger. Its exceptions propagate to the caller of send().
    """

    def __init__(self, on_send: Optional[Callable[[str, int], None]] = None):
        self.on_send = on_send
        self.fail_all = False
        self._fail_next = 0
        self._transfers: List[TransferRecord] = []
        self._lock = threading.Lock()

    def fail_next(self, count: int = 1) -> None:
        """Make the next `count` sends report failure"""
        with self._lock:
            self._fail_next += count

    def send(self, account: str, amount: int) -> bool:
        with self._lock:
            if self.fail_all or self._fail_next:
                if self._fail_next:
                    self._fail_next -= 1
                logger.warning(f"Simulated transfer failure: {amount} to {account}")
                return False

        if self.on_send:
            self.on_send(account, amount)

        with self._lock:
            self._transfers.append(TransferRecord(account=account, amount=amount))
        return True

    def health_check(self) -> bool:
        return not self.fail_all

    @property
    def transfers(self) -> List[TransferRecord]:
        with self._lock:
            return list(self._transfers)

    def total_sent(self, account: Optional[str] = None) -> int:
        return sum(t.amount for t in self.transfers if account is None or t.account == account)


class HttpTransferGateway(TransferGateway):
    """REST client for an external payout service"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, account: str, amount: int) -> bool:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        start = time.time()
        try:
            response = self._client.post(
                f"{self.base_url}/payouts",
                json={"account_id": account, "amount": amount},
                headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Payout service unreachable: {e}")
            return False

        latency_ms = (time.time() - start) * 1000
        if response.is_success:
            logger.debug(f"Payout of {amount} to {account} accepted in {latency_ms:.1f}ms")
            return True

        logger.warning(f"Payout service returned {response.status_code}: {response.text}")
        return False

    def health_check(self) -> bool:
        """Check if the payout service is healthy"""
        try:
            r = self._client.get(f"{self.base_url}/health")
            return r.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self) -> None:
        """Close the HTTP client"""
        self._client.close()
