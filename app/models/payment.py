from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    id: str
    url: str | None
    mode: str  # payment|subscription
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExternalSubscription:
    id: str
    status: str  # provider status: active|trialing|past_due|canceled|...
    customer_id: str | None = None
    item_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at: datetime | None = None
    cancel_at_period_end: bool = False
    metadata: dict[str, str] = field(default_factory=dict)
