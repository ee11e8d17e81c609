from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

MARKETPLACE = "marketplace"
SUBSCRIPTION = "subscription"
COURSE = "course"


class PaymentStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    CANCELED = "canceled"


class PaymentEvent(BaseModel):
    """Rail-agnostic payment outcome handed to the dispatcher. Never persisted."""

    provider: str
    status: PaymentStatus
    feature: Optional[str] = None
    reference: Optional[str] = None     # stable external reference
    amount: float = 0.0                 # major units
    currency: str = "usd"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def dedupe_key(self) -> Optional[str]:
        if not self.reference:
            return None
        return f"{self.provider}:{self.reference}"

    def meta(self, *keys, default=None):
        """First non-empty metadata value among `keys`."""
        for key in keys:
            value = self.metadata.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
        return default
