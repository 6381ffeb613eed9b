from ._schema import SCHEMA_VERSION, SCHEMA_SQL
from ._tx import immediate
from .accounts import AccountRepo
from .balances import BalanceRepo
from .transactions import TransactionRepo
from .search_history import SearchHistoryRepo
from .manager import StorageManager

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "immediate",
    "AccountRepo",
    "BalanceRepo",
    "TransactionRepo",
    "SearchHistoryRepo",
    "StorageManager",
]
