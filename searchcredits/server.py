"""
server.py - Search credits server entry point.

Single-process server combining:
 - SQLite persistent storage via StorageManager
 - Credit ledger, search executor, transaction recorder and orchestrator
 - REST API (FastAPI on uvicorn, port 8080)

Usage:
    python -m searchcredits.server [--api-port 8080] [--db-path data/searchcredits.db] [--no-provider]

The provider API key is read from the RAPIDAPI_KEY environment variable.
"""

import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from searchcredits import __version__
from searchcredits.account import AccountService
from searchcredits.auth import DEFAULT_ADMIN_KEY, AuthService
from searchcredits.executor import SearchExecutor
from searchcredits.ledger import DEFAULT_SIGNUP_CREDITS, CreditLedger
from searchcredits.orchestrator import SearchOrchestrator
from searchcredits.provider import (
    DEFAULT_PROVIDER_TIMEOUT,
    DEFAULT_PROVIDER_URL,
    HttpPropertyProvider,
    PropertyDataProvider,
    StubPropertyProvider,
)
from searchcredits.recorder import DEFAULT_HASH_BUCKET_SEC, TransactionRecorder
from searchcredits.routers import register_all_routers
from searchcredits.storage import StorageManager

logger = logging.getLogger("server")


class SearchServer:
    """Wires storage, services and the REST API into one process."""

    def __init__(
        self,
        api_port: int = 8080,
        db_path: str = "data/searchcredits.db",
        provider: Optional[PropertyDataProvider] = None,
        provider_url: str = DEFAULT_PROVIDER_URL,
        provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT,
        signup_credits: int = DEFAULT_SIGNUP_CREDITS,
        hash_bucket_sec: int = DEFAULT_HASH_BUCKET_SEC,
        admin_key: str = DEFAULT_ADMIN_KEY,
        jwt_secret: str = "",
    ):
        self.api_port = api_port
        self.db_path = db_path
        self.provider_url = provider_url
        self.provider_timeout = provider_timeout
        self.signup_credits = signup_credits
        self.hash_bucket_sec = hash_bucket_sec
        self._admin_key = admin_key
        self._jwt_secret = jwt_secret

        # Built lazily so a missing RAPIDAPI_KEY surfaces at startup, not import
        self.provider: Optional[PropertyDataProvider] = provider

        # Storage + services are initialized async on app startup
        self.storage: Optional[StorageManager] = None
        self.recorder: Optional[TransactionRecorder] = None
        self.ledger: Optional[CreditLedger] = None
        self.accounts: Optional[AccountService] = None
        self.auth: Optional[AuthService] = None
        self.executor: Optional[SearchExecutor] = None
        self.orchestrator: Optional[SearchOrchestrator] = None

        self.app = FastAPI(title="Search Credits", version=__version__, lifespan=self._lifespan)
        self.app.state.server = self
        register_all_routers(self.app)

        @self.app.get("/")
        async def root():
            return {
                "service": "Search Credits",
                "api_port": self.api_port,
                "provider": self.provider.name if self.provider else None,
            }

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self._init_services()
        try:
            yield
        finally:
            await self._close_services()

    async def _init_services(self):
        """Initialize storage and wire up services (must be called in async context)."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        if self.provider is None:
            self.provider = HttpPropertyProvider(base_url=self.provider_url, timeout=self.provider_timeout)

        self.storage = StorageManager(self.db_path)
        await self.storage.initialize()

        self.recorder = TransactionRecorder(
            self.storage.history, self.storage.transactions, bucket_sec=self.hash_bucket_sec,
        )
        self.ledger = CreditLedger(self.storage.balances, self.storage.transactions, self.recorder)
        self.accounts = AccountService(self.storage.accounts, self.ledger, signup_credits=self.signup_credits)
        self.auth = AuthService(
            self.storage.accounts, self.accounts,
            admin_key=self._admin_key, jwt_secret=self._jwt_secret,
        )
        self.executor = SearchExecutor(self.provider, timeout=self.provider_timeout)
        self.orchestrator = SearchOrchestrator(self.accounts, self.ledger, self.executor, self.recorder)

        logger.info("Services initialized (db=%s, provider=%s)", self.db_path, self.provider.name)

    async def _close_services(self):
        if self.provider:
            await self.provider.aclose()
        if self.storage:
            await self.storage.close()

    # -------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------

    async def start(self):
        """Run the API server; services come up in the app lifespan."""
        config = uvicorn.Config(
            self.app,
            host="0.0.0.0",
            port=self.api_port,
            log_level="info",
        )
        self._uvicorn_server = uvicorn.Server(config)
        logger.info("REST API starting on port %d", self.api_port)
        await self._uvicorn_server.serve()

    async def stop(self):
        self._uvicorn_server.should_exit = True


def main():
    """CLI entry point for the search credits server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = argparse.ArgumentParser(description="Search Credits Server")
    parser.add_argument("--api-port", type=int, default=8080, help="REST API port (default: 8080)")
    parser.add_argument("--db-path", default="data/searchcredits.db",
                        help="SQLite database path (default: data/searchcredits.db)")
    parser.add_argument("--provider-url", default=DEFAULT_PROVIDER_URL,
                        help=f"Property data provider base URL (default: {DEFAULT_PROVIDER_URL})")
    parser.add_argument("--provider-timeout", type=float, default=DEFAULT_PROVIDER_TIMEOUT,
                        help=f"Provider timeout in seconds (default: {DEFAULT_PROVIDER_TIMEOUT})")
    parser.add_argument("--signup-credits", type=int, default=DEFAULT_SIGNUP_CREDITS,
                        help=f"Credits granted to new accounts (default: {DEFAULT_SIGNUP_CREDITS})")
    parser.add_argument("--hash-bucket-sec", type=int, default=DEFAULT_HASH_BUCKET_SEC,
                        help=f"Duplicate-search window in seconds (default: {DEFAULT_HASH_BUCKET_SEC})")
    parser.add_argument("--admin-key", default=DEFAULT_ADMIN_KEY, help="Admin API key")
    parser.add_argument("--jwt-secret", default="", help="JWT signing secret (default: ephemeral)")
    parser.add_argument("--no-provider", action="store_true",
                        help="Use the offline stub provider instead of the HTTP provider")
    args = parser.parse_args()

    server = SearchServer(
        api_port=args.api_port,
        db_path=args.db_path,
        provider=StubPropertyProvider() if args.no_provider else None,
        provider_url=args.provider_url,
        provider_timeout=args.provider_timeout,
        signup_credits=args.signup_credits,
        hash_bucket_sec=args.hash_bucket_sec,
        admin_key=args.admin_key,
        jwt_secret=args.jwt_secret,
    )

    logger.info("=" * 60)
    logger.info("  Search Credits Server")
    logger.info("  REST API:    http://localhost:%d", args.api_port)
    logger.info("  Database:    %s", args.db_path)
    logger.info("  Provider:    %s", "stub (offline)" if args.no_provider else args.provider_url)
    if args.admin_key == DEFAULT_ADMIN_KEY:
        logger.warning("  Admin key:   default (set --admin-key in production)")
    logger.info("=" * 60)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
