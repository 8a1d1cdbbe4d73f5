"""
FastAPI REST API Module

Routes identified deposit/withdraw calls to the ledger and exposes the
read-only accessors. Ledger errors are returned with their diagnostic fields.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from .audit import AuditEventType
from .config import get_config
from .errors import (
    LedgerError, ExceedsBankCap, ExceedsWithdrawLimit, InsufficientBalance,
    InvalidAmount, ReentrancyDetected, TransferFailed
)
from .ledger import CustodyLedger
from .logging_config import setup_logging
from . import __version__


ERROR_STATUS = {
    InvalidAmount: 400,
    ExceedsBankCap: 400,
    ExceedsWithdrawLimit: 400,
    InsufficientBalance: 400,
    ReentrancyDetected: 409,
    TransferFailed: 502,
}


class DepositRequest(BaseModel):
    account_id: str = Field(..., min_length=1, description="Depositing account")
    amount: int = Field(..., ge=0, description="Value attached to the deposit")


class WithdrawRequest(BaseModel):
    account_id: str = Field(..., min_length=1, description="Withdrawing account")
    amount: int = Field(..., ge=0, description="Value to release to the account")


class BalanceResponse(BaseModel):
    account_id: str
    balance: int


class OperationResponse(BaseModel):
    account_id: str
    amount: int
    balance: int
    message: str


def get_ledger(request: Request) -> CustodyLedger:
    return request.app.state.ledger


def create_app(ledger: Optional[CustodyLedger] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Custody Ledger API",
        description="Custodial ledger with capacity and withdrawal ceilings",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.ledger = ledger or CustodyLedger.from_config()

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})

    @app.get("/health")
    async def health_check(ledger: CustodyLedger = Depends(get_ledger)):
        """Health check endpoint, including the transfer gateway"""
        gateway_ok = ledger.transfer_gateway.health_check()
        return {
            "status": "healthy" if gateway_ok else "degraded",
            "transfer_gateway": "healthy" if gateway_ok else "unreachable",
            "service": "custody_ledger",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.post("/deposit", response_model=OperationResponse)
    async def deposit(request: DepositRequest, ledger: CustodyLedger = Depends(get_ledger)):
        """Deposit value into the caller's account"""
        ledger.deposit(request.amount, request.account_id)
        return OperationResponse(
            account_id=request.account_id,
            amount=request.amount,
            balance=ledger.balance_of(request.account_id),
            message="Deposit accepted"
        )

    @app.post("/withdraw", response_model=OperationResponse)
    async def withdraw(request: WithdrawRequest, ledger: CustodyLedger = Depends(get_ledger)):
        """
        Withdraw value from the caller's account

        The transfer gateway is called synchronously on the event loop, so
        a slow payout service stalls every request to this instance until it
        answers or its timeout expires. Requests are serialized either way.
        """
        ledger.withdraw(request.amount, request.account_id)
        return OperationResponse(
            account_id=request.account_id,
            amount=request.amount,
            balance=ledger.balance_of(request.account_id),
            message="Withdrawal completed"
        )

    @app.get("/balances/{account_id}", response_model=BalanceResponse)
    async def balance_of(account_id: str, ledger: CustodyLedger = Depends(get_ledger)):
        """Get an account's current balance"""
        return BalanceResponse(account_id=account_id, balance=ledger.balance_of(account_id))

    @app.get("/stats")
    async def statistics(ledger: CustodyLedger = Depends(get_ledger)):
        """Get ledger totals, counters and limits"""
        return ledger.get_statistics().to_dict()

    @app.get("/audit/verify")
    async def verify_audit_trail(ledger: CustodyLedger = Depends(get_ledger)):
        """Verify the audit hash chain"""
        if ledger.audit_trail is None:
            return JSONResponse(status_code=404, content={"detail": "Audit trail is disabled"})

        result = ledger.audit_trail.verify_integrity()
        ledger.audit_trail.log_event(
            event_type=AuditEventType.AUDIT_INTEGRITY_CHECK,
            entity_type="ledger",
            entity_id=ledger.owner,
            metadata={"valid": result["valid"], "total_events": result["total_events"]}
        )
        return result

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Configure logging and serve the API with uvicorn"""
    config = get_config()
    setup_logging(config.log_level, "custody", config.log_format)
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port
    )
