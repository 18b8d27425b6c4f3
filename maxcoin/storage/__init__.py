from ._schema import SCHEMA_VERSION, SCHEMA_SQL
from .accounts import AccountRepo
from .balances import BalanceRepo
from .transactions import TransactionRepo, new_tx_id
from .commissions import CommissionRepo
from .lottery import LotteryRepo
from .config_repo import ConfigRepo
from .manager import StorageManager

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "AccountRepo",
    "BalanceRepo",
    "TransactionRepo",
    "CommissionRepo",
    "LotteryRepo",
    "ConfigRepo",
    "StorageManager",
    "new_tx_id",
]
