"""
Heuristic receipt parsing.

Turns the raw text returned by an OCR provider into vendor, date, total, tax, currency and
line items. The rules are deliberately simple and order-sensitive; receipts already stored
by earlier releases were parsed with exactly these rules, so keep them stable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from expense_tracker.core.logging import get_logger, log_event

logger = get_logger(__name__)

_AMOUNT = r"(\d+[.,]\d+)"

DATE_RE = re.compile(r"(\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4})|(\d{2,4}[/.-]\d{1,2}[/.-]\d{1,2})")
DATE_SEPARATOR_RE = re.compile(r"[/.-]")
TOTAL_RE = re.compile(r"total[:\s]*[$€£]?" + _AMOUNT, re.IGNORECASE)
TOTAL_SUFFIX_RE = re.compile(r"[$€£]?" + _AMOUNT + r"[\s]*total", re.IGNORECASE)
CURRENCY_AMOUNT_RE = re.compile(r"[$€£]" + _AMOUNT)
TAX_RE = re.compile(r"tax[:\s]*[$€£]?" + _AMOUNT, re.IGNORECASE)
QUANTITY_ITEM_RE = re.compile(r"(\d+)\s+x\s+(.*?)\s+[$€£]?" + _AMOUNT)
SIMPLE_ITEM_RE = re.compile(r"(.*?)\s+[$€£]?" + _AMOUNT)

CURRENCY_SYMBOLS: tuple[tuple[str, str], ...] = (("$", "USD"), ("€", "EUR"), ("£", "GBP"))
DEFAULT_CURRENCY = "USD"
_ITEM_EXCLUDE_WORDS = ("total", "tax", "subtotal")


@dataclass(frozen=True)
class ReceiptItem:
    description: str
    amount: str
    quantity: str | None = None

    def to_dict(self) -> dict[str, str]:
        out = {"description": self.description, "amount": self.amount}
        if self.quantity is not None:
            out = {"quantity": self.quantity, **out}
        return out


@dataclass(frozen=True)
class ExtractedReceiptData:
    vendor: str
    date: str
    total: str = ""
    tax: str = ""
    currency: str = DEFAULT_CURRENCY
    items: list[ReceiptItem] = field(default_factory=list)
    category: str | None = None

    @property
    def description(self) -> str | None:
        return f"Receipt: {self.vendor}" if self.vendor else None

    def to_dict(self) -> dict[str, Any]:
        """JSON payload stored on the task and fed to expense reconciliation."""
        out: dict[str, Any] = {
            "vendor": self.vendor,
            "date": self.date,
            "total": self.total,
            "tax": self.tax,
            "currency": self.currency,
            "items": [item.to_dict() for item in self.items],
            "cost": self.total,
        }
        if self.category:
            out["type"] = self.category
        if self.description:
            out["description"] = self.description
        return out


def _today() -> date:
    return date.today()


def _normalize_amount(raw: str) -> str:
    return raw.replace(",", ".", 1)


def normalize_date(raw: str) -> str:
    parts = DATE_SEPARATOR_RE.split(raw)
    if len(parts) != 3:
        raise ValueError(f"Unexpected date shape: {raw}")
    first, middle, last = parts
    if len(first) == 4:
        year, month, day = first, middle, last
    elif len(last) == 4:
        year, month, day = last, first, middle
    else:
        year = f"20{last}" if len(last) == 2 else last
        month, day = first, middle
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"


def extract_date(text: str, *, today: date | None = None) -> str:
    match = DATE_RE.search(text)
    if not match:
        return (today or _today()).isoformat()
    raw = match.group(0)
    try:
        return normalize_date(raw)
    except ValueError:
        log_event(logger, "ocr.extraction.date_unparsed", raw_date=raw)
        return raw


def extract_total(text: str) -> str:
    for pattern in (TOTAL_RE, TOTAL_SUFFIX_RE):
        match = pattern.search(text)
        if match:
            return _normalize_amount(match.group(1))

    total = ""
    largest = Decimal("0")
    for match in CURRENCY_AMOUNT_RE.finditer(text):
        candidate = _normalize_amount(match.group(1))
        amount = Decimal(candidate)
        if amount > largest:
            largest = amount
            total = candidate
    return total


def extract_tax(text: str) -> str:
    match = TAX_RE.search(text)
    return _normalize_amount(match.group(1)) if match else ""


def detect_currency(text: str) -> str:
    for symbol, code in CURRENCY_SYMBOLS:
        if symbol in text:
            return code
    return DEFAULT_CURRENCY


def extract_items(text: str) -> list[ReceiptItem]:
    items = [
        ReceiptItem(
            quantity=m.group(1),
            description=m.group(2).strip(),
            amount=_normalize_amount(m.group(3)),
        )
        for m in QUANTITY_ITEM_RE.finditer(text)
    ]
    if items:
        return items

    for m in SIMPLE_ITEM_RE.finditer(text):
        description = m.group(1).strip()
        lowered = description.lower()
        if any(word in lowered for word in _ITEM_EXCLUDE_WORDS):
            continue
        items.append(ReceiptItem(description=description, amount=_normalize_amount(m.group(2))))
    return items


def guess_expense_type(text: str) -> str | None:
    t = text.lower()

    food_strong = ("restaurant", "cafe", "coffee", "gratuity", "server", "table", "dine in")
    lodging_strong = ("hotel", "check-in", "check in", "check-out", "folio", "room rate")
    transport_strong = ("taxi", "uber", "lyft", "fuel", "gasoline", "parking", "boarding pass")

    scores = {"Food": 0, "Lodging": 0, "Transportation": 0}
    if any(k in t for k in food_strong):
        scores["Food"] += 2
    if any(k in t for k in lodging_strong):
        scores["Lodging"] += 2
    if any(k in t for k in transport_strong):
        scores["Transportation"] += 2

    for k in ("meal", "beverage", "tip", "dining"):
        if k in t:
            scores["Food"] += 1
    for k in ("room", "nights", "stay", "reservation"):
        if k in t:
            scores["Lodging"] += 1
    for k in ("fare", "ride", "trip", "toll", "station"):
        if k in t:
            scores["Transportation"] += 1

    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    best, best_score = ranked[0]
    if best_score < 2 or ranked[1][1] == best_score:
        return None
    return best


def extract_receipt_data(text: str, *, today: date | None = None) -> ExtractedReceiptData:
    return ExtractedReceiptData(
        vendor=text.split("\n")[0].strip(),
        date=extract_date(text, today=today),
        total=extract_total(text),
        tax=extract_tax(text),
        currency=detect_currency(text),
        items=extract_items(text),
        category=guess_expense_type(text),
    )
