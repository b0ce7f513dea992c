"""Zugriff auf lose strukturierte XML-Knoten und Betragsumrechnung.

xmltodict liefert ein Element je nach Inhalt in unterschiedlicher Form:

* als nackten String (``<cbc:IssueDate>2024-03-14</cbc:IssueDate>``),
* als dict mit ``#text`` und ``@attr``-Schlüsseln, sobald Attribute vorhanden
  sind (``<ram:GrandTotalAmount currencyID="EUR">105.91</ram:GrandTotalAmount>``),
* als Liste, wenn das Element mehrfach vorkommt,
* als ``None`` bei leeren Elementen oder wenn es ganz fehlt.

Die Normalisierer für CII und UBL lesen ausschließlich über die Funktionen
dieses Moduls, damit jede Form nur an einer Stelle behandelt wird.
"""
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Tuple

CENT = Decimal("0.01")

# Schlüssel, unter denen verschiedene Parser-Konfigurationen den Elementtext ablegen.
TEXT_KEYS = ("#text", "@value", "_text")
ATTRIBUTE_PREFIXES = ("@", "@_")

_AMOUNT_JUNK = re.compile(r"[^0-9,.\-]")


def first(node: Any) -> Any:
    """Erstes Element einer Wiederholung, sonst den Knoten selbst."""
    if isinstance(node, list):
        return node[0] if node else None
    return node


def child(node: Any, *path: str) -> Any:
    """Folgt ``path`` durch den Baum; fehlende Zwischenknoten ergeben None."""
    current = node
    for key in path:
        current = first(current)
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def first_child(node: Any, *keys: str) -> Any:
    """Erstes vorhandene Kind aus ``keys`` (Präferenzreihenfolge)."""
    for key in keys:
        value = child(node, key)
        if value is not None:
            return value
    return None


def text_of(node: Any) -> Optional[str]:
    node = first(node)
    if node is None:
        return None
    if isinstance(node, dict):
        for key in TEXT_KEYS:
            value = node.get(key)
            if value is not None:
                return text_of(value)
        return None
    if isinstance(node, bool):
        return None
    text = str(node).strip()
    return text or None


def attribute_of(node: Any, name: str) -> Optional[str]:
    node = first(node)
    if not isinstance(node, dict):
        return None
    for prefix in ATTRIBUTE_PREFIXES:
        value = node.get(prefix + name)
        if value is not None:
            text = str(value).strip()
            if text:
                return text
    return None


def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    """Betrag mit ``,`` oder ``.`` als Dezimaltrenner lesen.

    ``"89,00"`` → 89.00, ``"1.234,56"`` → 1234.56, ``"1,234.56"`` → 1234.56.
    Unlesbarer Text ergibt None.
    """
    if raw is None:
        return None
    s = _AMOUNT_JUNK.sub("", str(raw))
    if not s:
        return None

    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", "") if s.count(",") > 1 else s.replace(",", ".")
    elif s.count(".") > 1:
        s = s.replace(".", "")

    try:
        value = Decimal(s)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_amount(value: Optional[Decimal]) -> Optional[float]:
    if value is None:
        return None
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def number_of(node: Any) -> Optional[float]:
    return to_amount(parse_amount(text_of(node)))


def derive_missing(
    net: Optional[float], vat: Optional[float], gross: Optional[float]
) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    """Ergänzt den fehlenden Wert aus {netto, ust, brutto}, wenn genau zwei bekannt sind."""
    known = [v is not None for v in (net, vat, gross)]
    if sum(known) != 2:
        return net, vat, gross

    if net is None:
        net = to_amount(Decimal(str(gross)) - Decimal(str(vat)))
    elif gross is None:
        gross = to_amount(Decimal(str(net)) + Decimal(str(vat)))
    else:
        vat = to_amount(Decimal(str(gross)) - Decimal(str(net)))
    return net, vat, gross
