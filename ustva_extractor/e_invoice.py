"""E-Rechnungen: XML lesen, CII/UBL normalisieren, ZUGFeRD-Anhänge aus PDFs holen."""
from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional
from xml.parsers.expat import ExpatError

import pikepdf
import xmltodict

from .models import NormalizedInvoice
from .nodes import attribute_of, child, derive_missing, first, first_child, number_of, text_of

logger = logging.getLogger(__name__)

XML_HINTS = (
    "zugferd",
    "factur-x",
    "facturx",
    "xrechnung",
)

# Namespace-Präfixe variieren je nach Erzeuger (rsm:, ns0:, ohne Präfix ...)
RE_CII_ROOT = re.compile(r"<\s*([a-zA-Z0-9_\-]+:)?CrossIndustryInvoice\b")
RE_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")

CII_SUMMATION_KEYS = (
    "SpecifiedTradeSettlementHeaderMonetarySummation",
    "SpecifiedTradeSettlementMonetarySummation",
)


class InvoiceXmlError(ValueError):
    """XML ist nicht wohlgeformt."""


class CiiRootNotFound(ValueError):
    """Kein CrossIndustryInvoice-Wurzelelement im Baum."""


@dataclass
class EmbeddedXml:
    xml_text: str
    filename: str


def _strip_namespace(path, key: str, value: Any):
    if key.startswith("@xmlns"):
        return None
    if key.startswith("@"):
        return "@" + key[1:].split(":")[-1], value
    return key.split(":")[-1], value


def parse_invoice_xml(xml_text: str) -> dict:
    """Parst XML zu einem dict ohne Namespace-Präfixe (``#text`` / ``@attr``)."""
    try:
        tree = xmltodict.parse(xml_text, postprocessor=_strip_namespace)
    except (ExpatError, ValueError) as exc:
        raise InvoiceXmlError(str(exc)) from exc
    return tree or {}


def is_cii(xml_text: str) -> bool:
    return bool(RE_CII_ROOT.search(xml_text))


def is_ubl(tree: dict) -> bool:
    return isinstance(tree, dict) and "Invoice" in tree


def _cii_date(node: Any) -> Optional[str]:
    raw = text_of(node)
    if raw is None:
        return None
    fmt = attribute_of(node, "format")
    m = RE_COMPACT_DATE.match(raw)
    # 102 = CCYYMMDD; andere Formatcodes (z.B. 610 = CCYYMM) bleiben roh
    if m and fmt in (None, "102"):
        return "{}-{}-{}".format(*m.groups())
    return raw


def normalize_cii(tree: dict) -> NormalizedInvoice:
    root = child(tree, "CrossIndustryInvoice")
    if root is None:
        raise CiiRootNotFound("CII root element not found")

    date = _cii_date(child(root, "ExchangedDocument", "IssueDateTime", "DateTimeString"))
    supplier = text_of(
        child(
            root,
            "SupplyChainTradeTransaction",
            "ApplicableHeaderTradeAgreement",
            "SellerTradeParty",
            "Name",
        )
    )

    settlement = child(root, "SupplyChainTradeTransaction", "ApplicableHeaderTradeSettlement")
    sums = first_child(settlement, *CII_SUMMATION_KEYS)

    net_node = first_child(sums, "TaxBasisTotalAmount", "LineTotalAmount")
    # TaxTotalAmount kann je Währung mehrfach auftreten
    vat_node = first(child(sums, "TaxTotalAmount"))
    gross_node = first_child(sums, "GrandTotalAmount", "TaxInclusiveAmount", "DuePayableAmount")

    currency = (
        attribute_of(net_node, "currencyID")
        or attribute_of(gross_node, "currencyID")
        or attribute_of(vat_node, "currencyID")
        or text_of(child(settlement, "InvoiceCurrencyCode"))
    )

    net, vat, gross = derive_missing(number_of(net_node), number_of(vat_node), number_of(gross_node))
    return NormalizedInvoice(
        format="cii",
        date=date,
        supplier=supplier,
        currency=currency,
        net=net,
        vat=vat,
        gross=gross,
    )


def normalize_ubl(tree: dict) -> NormalizedInvoice:
    invoice = child(tree, "Invoice")
    if invoice is None:
        invoice = tree

    monetary = child(invoice, "LegalMonetaryTotal")
    payable = child(monetary, "PayableAmount")
    line_ext = child(monetary, "LineExtensionAmount")
    tax_amount = child(invoice, "TaxTotal", "TaxAmount")

    currency = (
        attribute_of(payable, "currencyID")
        or attribute_of(line_ext, "currencyID")
        or attribute_of(tax_amount, "currencyID")
        or text_of(child(invoice, "DocumentCurrencyCode"))
    )

    party = child(invoice, "AccountingSupplierParty", "Party")
    supplier = (
        text_of(child(party, "PartyName", "Name"))
        or text_of(child(party, "Name"))
        or text_of(child(party, "PartyLegalEntity", "RegistrationName"))
    )

    date = text_of(child(invoice, "IssueDate")) or text_of(child(invoice, "InvoiceDate"))

    net, vat, gross = derive_missing(number_of(line_ext), number_of(tax_amount), number_of(payable))
    return NormalizedInvoice(
        format="ubl",
        date=date,
        supplier=supplier,
        currency=currency,
        net=net,
        vat=vat,
        gross=gross,
    )


def normalize_xml(xml_text: str) -> Optional[NormalizedInvoice]:
    """CII zuerst, dann UBL. None, wenn das XML nicht auswertbar ist."""
    try:
        if is_cii(xml_text):
            return normalize_cii(parse_invoice_xml(xml_text))
        tree = parse_invoice_xml(xml_text)
        if not is_ubl(tree):
            logger.warning("XML ohne bekanntes Wurzelelement: %s", ", ".join(tree) or "-")
            return None
        return normalize_ubl(tree)
    except (InvoiceXmlError, CiiRootNotFound) as exc:
        logger.warning("XML parse failed, falling back to OCR: %s", exc)
        return None


def _looks_like_xml(filename: str, mime_type: Optional[str]) -> bool:
    if mime_type and "xml" in mime_type.lower():
        return True
    lname = filename.lower()
    return lname.endswith(".xml") or any(h in lname for h in XML_HINTS)


def extract_embedded_xml(pdf_bytes: bytes) -> Optional[EmbeddedXml]:
    """Gibt die erste eingebettete XML-Datei eines PDFs zurück, sonst None.

    Kaputte PDFs gelten als "kein Anhang" und werden nur geloggt.
    """
    try:
        with pikepdf.open(io.BytesIO(pdf_bytes)) as pdf:
            for name, spec in pdf.attachments.items():
                filename = spec.filename or name
                attached = spec.get_file()
                if not _looks_like_xml(filename, attached.mime_type):
                    continue
                data = attached.read_bytes()
                return EmbeddedXml(xml_text=data.decode("utf-8-sig", errors="replace"), filename=filename)
    except Exception:
        logger.warning("PDF konnte nicht gelesen werden", exc_info=True)
    return None
