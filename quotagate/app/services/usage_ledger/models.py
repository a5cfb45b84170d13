"""Data models for per-principal daily usage."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class UsageRecord:
    """Token usage of one principal on one UTC day.

    Attributes:
        principal_id: The authenticated subject the budget is tracked against
        date_key: UTC day as YYYY-MM-DD
        tokens_used: Tokens charged so far today (never decreases)
        request_count: Requests admitted so far today
        last_updated: Time of the last write, if known
    """
    principal_id: str
    date_key: str
    tokens_used: int = 0
    request_count: int = 0
    last_updated: Optional[datetime] = field(default=None)

    def to_dict(self) -> dict:
        """Convert to the field layout stored in the counter store."""
        data = {
            "principalId": self.principal_id,
            "dateKey": self.date_key,
            "tokensUsed": self.tokens_used,
            "requestCount": self.request_count,
        }
        if self.last_updated is not None:
            data["lastUpdated"] = self.last_updated.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], principal_id: str, date_key: str) -> "UsageRecord":
        """Create from counter store fields.

        Values may arrive as strings (Redis) or ints (in-memory store).
        """
        last_updated = data.get("lastUpdated")
        if isinstance(last_updated, str):
            last_updated = datetime.fromisoformat(last_updated)
        return cls(
            principal_id=data.get("principalId", principal_id),
            date_key=data.get("dateKey", date_key),
            tokens_used=int(data.get("tokensUsed", 0)),
            request_count=int(data.get("requestCount", 0)),
            last_updated=last_updated,
        )
