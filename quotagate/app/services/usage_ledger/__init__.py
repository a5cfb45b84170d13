"""Daily per-principal usage ledger on top of the counter store."""

from .models import UsageRecord
from .service import UsageLedger

__all__ = [
    "UsageRecord",
    "UsageLedger",
]
