# Overview: Payment category classification and closing bucket totals.

"""
Payment categories

A sale is classified into one fine-grained category, either from its
structured payment_category or, for legacy rows, by keywords in the
free-text payment_method. Closings only keep four buckets:

    card  = card_machine + payment_link + ecommerce
    pix   = pix
    cash  = cash
    other = boleto_prepaid + boleto_postpaid + boleto_installment + gift + other
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from typing import Iterable

CARD_MACHINE = "card_machine"
PAYMENT_LINK = "payment_link"
ECOMMERCE = "ecommerce"
PIX = "pix"
CASH = "cash"
BOLETO_PREPAID = "boleto_prepaid"
BOLETO_POSTPAID = "boleto_postpaid"
BOLETO_INSTALLMENT = "boleto_installment"
GIFT = "gift"
OTHER = "other"

PAYMENT_CATEGORIES = (
    CARD_MACHINE,
    PAYMENT_LINK,
    ECOMMERCE,
    PIX,
    CASH,
    BOLETO_PREPAID,
    BOLETO_POSTPAID,
    BOLETO_INSTALLMENT,
    GIFT,
    OTHER,
)

BUCKET_CARD = "card"
BUCKET_PIX = "pix"
BUCKET_CASH = "cash"
BUCKET_OTHER = "other"
BUCKETS = (BUCKET_CARD, BUCKET_PIX, BUCKET_CASH, BUCKET_OTHER)

CATEGORY_BUCKETS = {
    CARD_MACHINE: BUCKET_CARD,
    PAYMENT_LINK: BUCKET_CARD,
    ECOMMERCE: BUCKET_CARD,
    PIX: BUCKET_PIX,
    CASH: BUCKET_CASH,
    BOLETO_PREPAID: BUCKET_OTHER,
    BOLETO_POSTPAID: BUCKET_OTHER,
    BOLETO_INSTALLMENT: BUCKET_OTHER,
    GIFT: BUCKET_OTHER,
    OTHER: BUCKET_OTHER,
}

_CARD_KEYWORDS = ("cartao", "card", "credito", "debito")
_PIX_KEYWORDS = ("pix",)
_CASH_KEYWORDS = ("dinheiro", "cash", "especie")


def _normalize(text: str | None) -> str:
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def classify_payment_method(payment_method: str | None) -> str:
    """Keyword classification of a free-text payment method."""
    method = _normalize(payment_method)
    if not method:
        return OTHER
    if any(word in method for word in _CARD_KEYWORDS):
        return CARD_MACHINE
    if any(word in method for word in _PIX_KEYWORDS):
        return PIX
    if any(word in method for word in _CASH_KEYWORDS):
        return CASH
    return OTHER


def resolve_category(payment_method: str | None, payment_category: str | None = None) -> str:
    """Structured category wins; otherwise fall back to keywords."""
    if payment_category in CATEGORY_BUCKETS:
        return payment_category
    return classify_payment_method(payment_method)


def bucket_for(payment_method: str | None, payment_category: str | None = None) -> str:
    return CATEGORY_BUCKETS[resolve_category(payment_method, payment_category)]


def is_cash(payment_method: str | None, payment_category: str | None = None) -> bool:
    return bucket_for(payment_method, payment_category) == BUCKET_CASH


@dataclass(frozen=True)
class CategoryTotals:
    total_cents: int
    by_category: dict = field(default_factory=dict)
    card_cents: int = 0
    pix_cents: int = 0
    cash_cents: int = 0
    other_cents: int = 0

    def to_dict(self) -> dict:
        return {
            "total_cents": self.total_cents,
            "total_card_cents": self.card_cents,
            "total_pix_cents": self.pix_cents,
            "total_cash_cents": self.cash_cents,
            "total_other_cents": self.other_cents,
            "by_category": dict(self.by_category),
        }


def calculate_category_totals(sales: Iterable) -> CategoryTotals:
    """
    Sum sale totals per category and per closing bucket.

    Accepts anything with total_cents, payment_method and (optionally)
    payment_category attributes: live Sale rows or frozen snapshots.
    """
    by_category = {category: 0 for category in PAYMENT_CATEGORIES}
    buckets = {bucket: 0 for bucket in BUCKETS}
    total = 0

    for sale in sales:
        amount = getattr(sale, "total_cents", None) or 0
        category = resolve_category(
            getattr(sale, "payment_method", None),
            getattr(sale, "payment_category", None),
        )
        by_category[category] += amount
        buckets[CATEGORY_BUCKETS[category]] += amount
        total += amount

    return CategoryTotals(
        total_cents=total,
        by_category=by_category,
        card_cents=buckets[BUCKET_CARD],
        pix_cents=buckets[BUCKET_PIX],
        cash_cents=buckets[BUCKET_CASH],
        other_cents=buckets[BUCKET_OTHER],
    )


def format_payment_method(method: str | None) -> str:
    """Display label for a payment method."""
    if not method:
        return "Não informado"
    # Label follows the keyword order of classify_payment_method
    lower = _normalize(method)
    category = classify_payment_method(method)
    if category == CARD_MACHINE:
        if "credito" in lower:
            return "Cartão Crédito"
        if "debito" in lower:
            return "Cartão Débito"
        return "Cartão"
    if category == PIX:
        return "PIX"
    if category == CASH:
        return "Dinheiro"
    if "boleto" in lower:
        return "Boleto"
    return method
