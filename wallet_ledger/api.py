"""
FastAPI REST API Module

HTTP transport for the wallet ledger: apply win/lose transactions, query
balances and ledger history. Handlers are plain functions so FastAPI runs
them on its threadpool and concurrent requests reach the store concurrently.
"""

from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Optional
import threading

from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, Field
import uvicorn

from . import __version__
from .balances import BalanceQuery
from .config import WalletConfig, get_config
from .errors import (
    InvalidRequest, AccountNotFound, InsufficientBalance, PersistenceError,
    TransactionTimeout,
)
from .logging_config import get_logger, log_action, setup_logging
from .migrations import bootstrap
from .models import TransactionRequest, MAX_ACCOUNT_ID
from .storage import LedgerStore, create_store
from .transactions import TransactionProcessor


logger = get_logger("wallet_ledger.api")


class TransactionBody(BaseModel):
    state: str = Field("", description="win or lose")
    amount: str = Field("", description="Decimal amount as string")
    transaction_id: str = Field("", alias="transactionId")


# Wallet System Context
class WalletSystem:
    """Wallet ledger with all components initialized"""

    def __init__(self, config: Optional[WalletConfig] = None,
                 store: Optional[LedgerStore] = None):
        self.config = config or get_config()
        self.store = store or create_store(
            self.config.database_url,
            pool_size=self.config.database_pool_size,
            busy_timeout=self.config.transaction_timeout_seconds or 5.0,
        )
        self.bootstrap_result = bootstrap(
            self.store,
            auto_migrate=self.config.auto_migrate,
            seed_accounts=self.config.seed_accounts,
        )
        self.transaction_processor = TransactionProcessor(
            self.store, timeout=self.config.transaction_timeout_seconds
        )
        self.balance_query = BalanceQuery(self.store)

    def close(self) -> None:
        self.store.close()


# Global wallet system instance - created on first use
wallet_system: Optional[WalletSystem] = None
_system_lock = threading.Lock()


def get_wallet_system() -> WalletSystem:
    global wallet_system
    with _system_lock:
        if wallet_system is None:
            wallet_system = WalletSystem()
        return wallet_system


def close_wallet_system() -> None:
    global wallet_system
    with _system_lock:
        if wallet_system is not None:
            wallet_system.close()
            wallet_system = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging on startup, release storage on shutdown"""
    cfg = get_config()
    setup_logging(cfg.log_level, log_format=cfg.log_format)
    logger.info("Wallet ledger starting (env=%s)", cfg.env)
    yield
    close_wallet_system()
    logger.info("Wallet ledger stopped")


def parse_user_id(raw: str) -> int:
    """Positive integer path parameter"""
    if not (raw.isascii() and raw.isdigit()) or not 0 < int(raw) <= MAX_ACCOUNT_ID:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid user id")
    return int(raw)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Wallet Ledger API",
        description="Idempotent win/lose transactions over exact decimal balances",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_request(request: Request, call_next):
        log_action(
            logger, "info", "received request",
            action="http_request",
            extra={
                "method": request.method,
                "uri": request.url.path + (f"?{request.url.query}" if request.url.query else ""),
                "ip": request.client.host if request.client else None,
                "source_type": request.headers.get("Source-Type"),
            }
        )
        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid request", "errors": jsonable_errors(exc)},
        )

    # Error bodies are {"error": message}
    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "env": get_config().env,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/")
    def root():
        """Root endpoint with system information"""
        return {
            "system": "Wallet Ledger",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "transaction": "POST /user/{user_id}/transaction",
                "balance": "GET /user/{user_id}/balance",
                "transactions": "GET /user/{user_id}/transactions",
            }
        }

    @app.post("/user/{user_id}/transaction")
    def create_transaction(
        user_id: str,
        body: TransactionBody,
        source_type: Optional[str] = Header(default=None, alias="Source-Type"),
        system: WalletSystem = Depends(get_wallet_system)
    ):
        """Apply a win (credit) or lose (debit) transaction"""
        account_id = parse_user_id(user_id)
        if not source_type:
            raise HTTPException(status_code=400, detail="Source-Type header is required")

        request = TransactionRequest(
            state=body.state,
            amount=body.amount,
            transaction_id=body.transaction_id,
            source_type=source_type,
        )

        try:
            result = system.transaction_processor.process(account_id, request)
        except InvalidRequest as e:
            raise HTTPException(status_code=400, detail=str(e))
        except AccountNotFound:
            raise HTTPException(status_code=404, detail="user not found")
        except InsufficientBalance:
            raise HTTPException(status_code=400, detail="insufficient balance")
        except TransactionTimeout as e:
            logger.warning("processTransaction timed out: user=%s error=%s", account_id, e)
            raise HTTPException(status_code=503, detail="transaction timed out, retry")
        except PersistenceError as e:
            logger.error("processTransaction failed: user=%s error=%s", account_id, e)
            raise HTTPException(status_code=500, detail="internal server error")

        if not result.is_applied:
            return {"message": "transaction already processed"}
        return {
            "message": "transaction processed successfully",
            "balance": result.balance.to_string(),
        }

    @app.get("/user/{user_id}/balance")
    def get_user_balance(
        user_id: str,
        system: WalletSystem = Depends(get_wallet_system)
    ):
        """Current balance with two fraction digits"""
        account_id = parse_user_id(user_id)
        try:
            balance = system.balance_query.query(account_id)
        except AccountNotFound:
            raise HTTPException(status_code=404, detail="user not found")
        except PersistenceError as e:
            logger.error("getBalance failed: user=%s error=%s", account_id, e)
            raise HTTPException(status_code=500, detail="internal server error")

        return {"userId": account_id, "balance": balance.to_string()}

    @app.get("/user/{user_id}/transactions")
    def get_user_transactions(
        user_id: str,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        system: WalletSystem = Depends(get_wallet_system)
    ):
        """Ledger entries of a user, newest first"""
        account_id = parse_user_id(user_id)
        try:
            entries = system.balance_query.history(account_id, limit=limit, offset=offset)
        except AccountNotFound:
            raise HTTPException(status_code=404, detail="user not found")
        except PersistenceError as e:
            logger.error("getTransactions failed: user=%s error=%s", account_id, e)
            raise HTTPException(status_code=500, detail="internal server error")

        return {
            "userId": account_id,
            "transactions": [entry.to_dict() for entry in entries],
            "count": len(entries),
        }

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    """Field locations and messages of a validation error"""
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


app = create_app()


# Run server function
def run_server(host: str = "0.0.0.0", port: int = 8000, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "wallet_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
