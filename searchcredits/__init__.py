"""
Credit-metered property search engine.

Basic searches are free; smart searches call an external property-data
provider and cost one credit. Includes aiosqlite storage, the credit
ledger, the search orchestrator and a FastAPI REST surface.
"""

__version__ = "0.1.0"

__all__ = [
    "account",
    "auth",
    "domain",
    "errors",
    "executor",
    "ledger",
    "orchestrator",
    "provider",
    "recorder",
    "server",
    "storage",
]
