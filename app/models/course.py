from __future__ import annotations

from dataclasses import dataclass

# Fallback prices (USD) when a course document carries none
DEFAULT_INDIVIDUAL_PRICE = 1000
DEFAULT_ORGANIZATION_PRICE = 5000


@dataclass(frozen=True, slots=True)
class Course:
    """Pricing view of a course; content lives in the CMS."""

    id: str
    title: str
    slug: str
    description: str = ""
    price: float | None = None
    individual_price: float | None = None
    organization_price: float | None = None
    is_free: bool = False

    @property
    def individual_checkout_price(self) -> float:
        return self.individual_price or self.price or DEFAULT_INDIVIDUAL_PRICE

    @property
    def organization_checkout_price(self) -> float:
        if self.organization_price:
            return self.organization_price
        if self.price:
            return self.price * 5
        return DEFAULT_ORGANIZATION_PRICE
