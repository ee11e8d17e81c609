from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class LineOutcome:
    """Result of one fulfillment step for one order line."""

    step: str                   # license | payout
    product_id: str
    ok: bool
    action: str                 # issued | renewed | credited | exists | skipped | failed
    error: Optional[str] = None


@dataclass
class FulfillmentResult:
    order_id: Optional[str]
    claimed: bool = False
    duplicate: bool = False
    status: Optional[str] = None
    licenses: List[LineOutcome] = field(default_factory=list)
    payouts: List[LineOutcome] = field(default_factory=list)
    notifications: List[str] = field(default_factory=list)

    @property
    def failures(self) -> List[LineOutcome]:
        return [o for o in self.licenses + self.payouts if not o.ok]
