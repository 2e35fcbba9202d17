# src/domain/offer_engine.py
"""
Pure discount computation. No I/O: callers pass the candidate offers in.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class OfferType(str, Enum):
    CONDITIONAL = "conditional"
    PROMOCODE = "promocode"


class OfferScope(str, Enum):
    ALL = "all"
    MOVIE = "movie"
    FIRST_TIME = "first_time"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


@dataclass(frozen=True)
class Cart:
    num_tickets: int
    subtotal_paise: int
    movie_id: str | None = None
    is_first_booking: bool = False


@dataclass(frozen=True)
class OfferRule:
    id: str
    title: str
    type: OfferType
    discount_type: DiscountType
    discount_value: int
    scope: OfferScope = OfferScope.ALL
    min_tickets: int = 0
    code: str | None = None
    movie_id: str | None = None
    is_active: bool = True
    starts_at: datetime | None = None
    ends_at: datetime | None = None


@dataclass(frozen=True)
class OfferEvaluation:
    discount_paise: int
    final_total_paise: int
    applied_offer: OfferRule | None


def compute_discount(subtotal_paise: int, discount_type: DiscountType, discount_value: int) -> int:
    """
    Percentage values are whole percents, flat values are paise.
    The discount never exceeds the subtotal.
    """
    if discount_type == DiscountType.PERCENTAGE:
        discount = round(subtotal_paise * max(0, discount_value) / 100)
    elif discount_type == DiscountType.FLAT:
        discount = max(0, discount_value)
    else:
        return 0
    return min(subtotal_paise, discount)


def _is_within_validity(offer: OfferRule, now: datetime) -> bool:
    if offer.starts_at and now < offer.starts_at:
        return False
    if offer.ends_at and now > offer.ends_at:
        return False
    return True


def _is_in_scope(offer: OfferRule, cart: Cart) -> bool:
    if offer.scope == OfferScope.MOVIE:
        return bool(offer.movie_id) and offer.movie_id == cart.movie_id
    if offer.scope == OfferScope.FIRST_TIME:
        return cart.is_first_booking
    return True


def _condition_met(offer: OfferRule, cart: Cart, promo_code: str | None) -> bool:
    if offer.type == OfferType.CONDITIONAL:
        return offer.min_tickets > 0 and cart.num_tickets >= offer.min_tickets

    if offer.type == OfferType.PROMOCODE:
        code = (offer.code or "").strip().upper()
        if not code or not promo_code or promo_code.strip().upper() != code:
            return False
        return cart.num_tickets >= offer.min_tickets

    return False


def evaluate_best_offer(
    cart: Cart,
    promo_code: str | None,
    offers: list[OfferRule],
    now: datetime,
) -> OfferEvaluation:
    """
    Evaluates every active offer against the cart and returns the one
    with the highest discount. Ties keep the first offer given.
    """
    if cart.subtotal_paise <= 0:
        return OfferEvaluation(discount_paise=0, final_total_paise=0, applied_offer=None)

    best: OfferRule | None = None
    best_discount = 0

    for offer in offers:
        if not offer.is_active or not _is_within_validity(offer, now):
            continue
        if not _is_in_scope(offer, cart) or not _condition_met(offer, cart, promo_code):
            continue

        discount = compute_discount(cart.subtotal_paise, offer.discount_type, offer.discount_value)
        if discount > best_discount:
            best = offer
            best_discount = discount

    return OfferEvaluation(
        discount_paise=best_discount,
        final_total_paise=max(0, cart.subtotal_paise - best_discount),
        applied_offer=best,
    )
