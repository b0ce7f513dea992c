"""Lokale Texterkennung für Belege ohne E-Rechnungs-XML (Route ``ocr-local``)."""
from __future__ import annotations

import io
import logging
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF
import pytesseract
from PIL import Image, ImageFilter, ImageOps

logger = logging.getLogger(__name__)


def pdf_to_images(pdf_bytes: bytes, dpi: int = 300, max_pages: int = 1) -> List[Image.Image]:
    images: List[Image.Image] = []
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        mat = fitz.Matrix(dpi / 72, dpi / 72)
        for page in doc:
            if len(images) >= max_pages:
                break
            pix = page.get_pixmap(matrix=mat, alpha=False)
            images.append(Image.frombytes("RGB", [pix.width, pix.height], pix.samples))
    return images


def preprocess(img: Image.Image) -> Image.Image:
    g = ImageOps.grayscale(img)
    g = ImageOps.autocontrast(g)
    return g.filter(ImageFilter.SHARPEN)


class LocalOcr:
    """Tesseract über pytesseract; Fehler ergeben leeren Text."""

    def __init__(
        self,
        lang: str = "deu+eng",
        dpi: int = 300,
        max_pages: int = 1,
        tesseract_cmd: Optional[str] = None,
    ):
        self.lang = lang
        self.dpi = dpi
        self.max_pages = max_pages
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "LocalOcr":
        return cls(
            lang=cfg.get("tesseract_lang") or "deu+eng",
            dpi=int(cfg.get("ocr_dpi") or 300),
            max_pages=int(cfg.get("ocr_max_pages") or 1),
            tesseract_cmd=cfg.get("tesseract_cmd"),
        )

    def _pages(self, data: bytes, pdf: bool) -> List[Image.Image]:
        if pdf:
            return pdf_to_images(data, dpi=self.dpi, max_pages=self.max_pages)
        with Image.open(io.BytesIO(data)) as im:
            im.load()
            return [im.copy()]

    def __call__(self, data: bytes, pdf: bool = False) -> str:
        try:
            pages = self._pages(data, pdf)
            texts = [pytesseract.image_to_string(preprocess(p), lang=self.lang) for p in pages]
        except Exception:
            logger.warning("Lokale OCR fehlgeschlagen", exc_info=True)
            return ""
        return "\n".join(t.strip() for t in texts if t and t.strip())
