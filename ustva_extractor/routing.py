"""Formaterkennung und Verteilung eines hochgeladenen Belegs auf den passenden Parser."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Callable, Optional

from .e_invoice import extract_embedded_xml, normalize_xml
from .models import NormalizedInvoice
from .parsing import parse_ocr_text

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".gif", ".webp"}

# (bytes, pdf=...) -> erkannter Text
Recognizer = Callable[..., str]


class Route(str, Enum):
    XML_CII = "xml-cii"
    XML_UBL = "xml-ubl"
    PDF_ZUGFERD_CII = "pdf-zugferd-cii"
    PDF_ZUGFERD_UBL = "pdf-zugferd-ubl"
    PDF_NO_XML = "pdf-no-xml"
    NEEDS_OCR = "needs_ocr"
    OCR_LOCAL = "ocr-local"
    OCR_TEXT = "ocr-text"

    @property
    def wants_ocr(self) -> bool:
        return self in (Route.NEEDS_OCR, Route.PDF_NO_XML)


HINTS = {
    Route.NEEDS_OCR: "No XML detected – use OCR path",
    Route.PDF_NO_XML: "PDF without embedded e-invoice XML – use OCR path",
}


@dataclass
class Dispatch:
    route: Route
    normalized: Optional[NormalizedInvoice] = None
    raw_text: str = ""
    attachment: Optional[str] = None

    @property
    def hint(self) -> Optional[str]:
        return HINTS.get(self.route)


def _suffix(file_name: str) -> str:
    return PurePath(file_name or "").suffix.lower()


def is_pdf(file_name: str, mime: str) -> bool:
    return "pdf" in (mime or "").lower() or _suffix(file_name) == ".pdf"


def is_xml(file_name: str, mime: str) -> bool:
    return "xml" in (mime or "").lower() or _suffix(file_name) == ".xml"


def is_image(file_name: str, mime: str) -> bool:
    return (mime or "").lower().startswith("image/") or _suffix(file_name) in IMAGE_SUFFIXES


def _dispatch_xml(data: bytes) -> Dispatch:
    try:
        xml_text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        logger.warning("XML ist kein UTF-8, weiter mit OCR: %s", exc)
        return Dispatch(Route.NEEDS_OCR)

    normalized = normalize_xml(xml_text)
    if normalized is None:
        return Dispatch(Route.NEEDS_OCR, raw_text=xml_text)
    route = Route.XML_CII if normalized.format == "cii" else Route.XML_UBL
    return Dispatch(route, normalized, raw_text=xml_text)


def _dispatch_pdf(data: bytes) -> Dispatch:
    embedded = extract_embedded_xml(data)
    if embedded is None:
        return Dispatch(Route.PDF_NO_XML)

    normalized = normalize_xml(embedded.xml_text)
    if normalized is None:
        return Dispatch(Route.PDF_NO_XML, raw_text=embedded.xml_text, attachment=embedded.filename)
    route = Route.PDF_ZUGFERD_CII if normalized.format == "cii" else Route.PDF_ZUGFERD_UBL
    return Dispatch(route, normalized, raw_text=embedded.xml_text, attachment=embedded.filename)


def dispatch(file_name: str, mime: str, data: bytes) -> Dispatch:
    """Bestimmt die Route für einen Beleg. Parserfehler werden nie weitergereicht."""
    if is_pdf(file_name, mime):
        return _dispatch_pdf(data)
    if is_xml(file_name, mime):
        return _dispatch_xml(data)
    return Dispatch(Route.NEEDS_OCR)


def ingest_document(
    file_name: str,
    mime: str,
    data: bytes,
    recognizer: Optional[Recognizer] = None,
) -> Dispatch:
    """``dispatch`` plus optionale lokale OCR für Bilder und PDFs ohne XML."""
    result = dispatch(file_name, mime, data)
    if recognizer is None or not result.route.wants_ocr:
        return result

    pdf = is_pdf(file_name, mime)
    if not (pdf or is_image(file_name, mime)):
        return result

    text = recognizer(data, pdf=pdf)
    if not text.strip():
        logger.info("OCR lieferte keinen Text für %s", file_name)
        return result
    return Dispatch(Route.OCR_LOCAL, parse_ocr_text(text), raw_text=text, attachment=result.attachment)


def route_text(text: str) -> Dispatch:
    """Von einer externen OCR erkannter Text."""
    return Dispatch(Route.OCR_TEXT, parse_ocr_text(text), raw_text=text)
