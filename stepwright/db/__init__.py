from .ledger_db import UsageLedgerDB
from .models import UsageLog, UserUsageLimits

__all__ = [
    "UsageLog",
    "UserUsageLimits",
    "UsageLedgerDB",
]
