import json
import logging
import mimetypes
from pathlib import Path

import pandas as pd
import typer

from . import logging_setup
from .config import load_config
from .ocr import LocalOcr
from .routing import ingest_document

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = {".xml", ".pdf", ".png", ".jpg", ".jpeg", ".tif", ".tiff"}

app = typer.Typer(help="UStVA Beleg-Extractor – E-Rechnungen (CII/UBL/ZUGFeRD) normalisieren")


def _guess_mime(path: Path) -> str:
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"


def _process(path: Path, recognizer=None) -> dict:
    result = ingest_document(path.name, _guess_mime(path), path.read_bytes(), recognizer=recognizer)
    row = {"route": result.route.value, "attachment": result.attachment}
    if result.normalized:
        row.update(result.normalized.model_dump())
    return row


@app.command()
def ingest(
    input_dir: Path = typer.Argument(..., help="Ordner mit Belegen"),
    log: Path = typer.Option(Path("audit_log.csv"), help="CSV-Protokoll (wird ergänzt)"),
    config: Path = typer.Option(None, help="YAML-Konfiguration"),
    local_ocr: bool = typer.Option(False, help="Bilder/PDFs ohne XML lokal per Tesseract lesen"),
):
    """Normalisiert alle Belege eines Ordners und schreibt ein Protokoll."""
    cfg = load_config(config)
    logging_setup.setup(cfg["log_level"])
    recognizer = LocalOcr.from_config(cfg) if (local_ocr or cfg["local_ocr"]) else None

    rows = []
    for p in sorted(input_dir.rglob("*")):
        if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES:
            try:
                rows.append({"source": str(p), **_process(p, recognizer)})
            except OSError as e:
                logger.error("Datei nicht lesbar: %s", p, exc_info=True)
                rows.append({"source": str(p), "error": str(e)})
    if rows:
        df = pd.DataFrame(rows)
        if log.exists():
            df0 = pd.read_csv(log)
            df = pd.concat([df0, df], ignore_index=True)
        df.to_csv(log, index=False)
        typer.echo(f"{len(rows)} Belege, Protokoll → {log}")
    else:
        typer.echo("Keine Belege gefunden.")


@app.command()
def normalize(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="XML, PDF oder Bild"),
    local_ocr: bool = typer.Option(False, help="Lokale OCR als Fallback"),
):
    """Zeigt Route und normalisierte Felder eines einzelnen Belegs."""
    cfg = load_config()
    recognizer = LocalOcr.from_config(cfg) if local_ocr else None
    typer.echo(json.dumps({"source": str(file), **_process(file, recognizer)}, ensure_ascii=False, indent=2))


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0"),
    port: int = typer.Option(8787),
):
    """Startet die HTTP-API (POST /ingest, POST /feedback ...)."""
    import uvicorn

    cfg = load_config()
    logging_setup.setup(cfg["log_level"])
    uvicorn.run("ustva_extractor.api:app", host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
