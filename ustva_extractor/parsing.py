"""Heuristische Felderkennung auf OCR-Text (niedrigste Konfidenz)."""
from __future__ import annotations

import re
from typing import Callable, List, Optional

from dateutil import parser as dateparser

from .models import NormalizedInvoice
from .nodes import derive_missing, parse_amount, to_amount

# (Muster, dayfirst)
DATE_PATTERNS = (
    (re.compile(r"\b\d{4}-\d{2}-\d{2}\b"), False),
    (re.compile(r"\b\d{2}\.\d{2}\.\d{4}\b"), True),
    (re.compile(r"\b\d{2}/\d{2}/\d{4}\b"), True),
)

RE_LEGAL_ENTITY = re.compile(
    r"(?i)(?:\b(?:gmbh|ag|ug|kg|ohg|gbr)\b|\be\.\s?k\.|\brechnung\s+von\b)"
)
RE_CURRENCY_EUR = re.compile(r"(?i)€|EUR")

LABELS_NET = re.compile(r"(?i)(netto|zwischensumme|net amount|subtotal)")
LABELS_VAT = re.compile(r"(?i)\b(ust|mwst|vat|tax)\b(?![-.\s]*(?:id|nr|no\b|reg|number))")
LABELS_GROSS = re.compile(r"(?i)(brutto|gesamt|\btotal\b|amount due|zu zahlen|payable)")
RE_INCLUSIVE = re.compile(r"(?i)\b(inkl|incl)")

RE_TRAILING_AMOUNT = re.compile(r"([-+]?\d[\d.,]*)\s*(?:€|EUR)?\s*$", re.I)
RE_EURO_AMOUNT = re.compile(r"(?:€|EUR)\s*([-+]?\d[\d.,]*)", re.I)


def find_date(text: str) -> Optional[str]:
    for regex, dayfirst in DATE_PATTERNS:
        for m in regex.finditer(text):
            try:
                found = dateparser.parse(m.group(0), dayfirst=dayfirst, yearfirst=not dayfirst)
            except (ValueError, OverflowError):
                continue
            return found.date().isoformat()
    return None


def guess_supplier(lines: List[str]) -> Optional[str]:
    for ln in lines:
        if RE_LEGAL_ENTITY.search(ln):
            return ln
    return lines[0] if lines else None


def _is_vat_amount(line: str) -> bool:
    # "Total VAT 19.00" nennt den Steuerbetrag, "Gesamt inkl. MwSt" den Bruttobetrag
    return bool(LABELS_VAT.search(line)) and not RE_INCLUSIVE.search(line)


def _not_gross(line: str) -> bool:
    return bool(LABELS_NET.search(line)) or _is_vat_amount(line)


def _find_line(
    lines: List[str], label: re.Pattern, exclude: Optional[Callable[[str], object]] = None
) -> str:
    for ln in lines:
        if label.search(ln) and not (exclude and exclude(ln)):
            return ln
    return ""


def amount_from_line(line: str) -> Optional[float]:
    if not line:
        return None
    for regex in (RE_TRAILING_AMOUNT, RE_EURO_AMOUNT):
        m = regex.search(line)
        if not m:
            continue
        value = parse_amount(m.group(1).rstrip(".,"))
        if value is not None:
            return to_amount(value)
    return None


def parse_ocr_text(text: str) -> NormalizedInvoice:
    text = text or ""
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]

    net = amount_from_line(_find_line(lines, LABELS_NET))
    vat = amount_from_line(_find_line(lines, LABELS_VAT, exclude=RE_INCLUSIVE.search))
    gross = amount_from_line(_find_line(lines, LABELS_GROSS, exclude=_not_gross))
    net, vat, gross = derive_missing(net, vat, gross)

    return NormalizedInvoice(
        format="ocr",
        date=find_date(text),
        supplier=guess_supplier(lines),
        currency="EUR" if RE_CURRENCY_EUR.search(text) else None,
        net=net,
        vat=vat,
        gross=gross,
    )
