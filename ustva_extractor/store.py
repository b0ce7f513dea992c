"""Optionale Ablage von Belegen und Feedback in einer relationalen Datenbank.

Ohne ``database_url`` läuft der Dienst mit ``NullStore`` weiter, also ohne
Historie. Schreibfehler werden geloggt und nie an den Aufrufer durchgereicht.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    MetaData,
    Table,
    Text,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .models import FeedbackEvent, IngestionRecord

logger = logging.getLogger(__name__)

# gehostete Postgres-Anbieter verlangen TLS
RE_SSL_HOSTS = re.compile(
    r"neon\.tech|supabase\.co|amazonaws\.com|azure\.com|gcp|renderusercontent\.com", re.I
)

metadata = MetaData()
JsonDocument = JSON().with_variant(JSONB(), "postgresql")

receipts = Table(
    "receipts",
    metadata,
    Column("id", Text, primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("tenant_id", Text),
    Column("user_id", Text),
    Column("file_name", Text, nullable=False),
    Column("mime", Text),
    Column("raw_text", Text),
    Column("fields", JsonDocument),
    Column("route", Text),
    Column("last_request_id", Text),
)

feedback_events = Table(
    "feedback_events",
    metadata,
    Column("id", Text, primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("request_id", Text),
    Column("file_name", Text, nullable=False),
    Column("verdict", Text, nullable=False),
    Column("original", JsonDocument, nullable=False),
    Column("corrected", JsonDocument),
    CheckConstraint("verdict in ('accepted','corrected')", name="feedback_events_verdict_check"),
)


class NullStore:
    """Keine Persistenz konfiguriert."""

    enabled = False

    def init_schema(self) -> bool:
        return False

    def ping(self) -> bool:
        return False

    def save_receipt(self, record: IngestionRecord) -> bool:
        return False

    def save_feedback(self, event: FeedbackEvent) -> bool:
        return False

    def recent_receipts(self, limit: int = 10) -> List[IngestionRecord]:
        return []

    def count_receipts(self) -> int:
        return 0


class SqlStore(NullStore):
    enabled = True

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if not url:
                raise ValueError("SqlStore braucht url oder engine")
            engine = create_engine(url, pool_pre_ping=True, connect_args=_connect_args(url))
        self.engine = engine

    def init_schema(self) -> bool:
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError:
            logger.error("Tabellen konnten nicht angelegt werden", exc_info=True)
            return False
        return True

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("select 1"))
        except SQLAlchemyError:
            logger.warning("DB-Ping fehlgeschlagen", exc_info=True)
            return False
        return True

    def _insert(self, table: Table, values: Dict[str, Any]) -> bool:
        try:
            with self.engine.begin() as conn:
                conn.execute(table.insert().values(**values))
        except SQLAlchemyError:
            logger.error("Insert in %s fehlgeschlagen", table.name, exc_info=True)
            return False
        return True

    def save_receipt(self, record: IngestionRecord) -> bool:
        return self._insert(receipts, record.model_dump())

    def save_feedback(self, event: FeedbackEvent) -> bool:
        return self._insert(feedback_events, event.model_dump())

    def recent_receipts(self, limit: int = 10) -> List[IngestionRecord]:
        stmt = select(receipts).order_by(receipts.c.created_at.desc()).limit(limit)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError:
            logger.error("Belege konnten nicht gelesen werden", exc_info=True)
            return []
        return [IngestionRecord.model_validate(dict(row)) for row in rows]

    def count_receipts(self) -> int:
        stmt = select(func.count()).select_from(receipts)
        try:
            with self.engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())
        except SQLAlchemyError:
            logger.error("Belege konnten nicht gezählt werden", exc_info=True)
            return 0


def _connect_args(url: str) -> Dict[str, Any]:
    if url.startswith("postgresql") and RE_SSL_HOSTS.search(url):
        return {"sslmode": "require"}
    return {}


def normalize_url(url: str) -> str:
    """``postgres://`` und ``postgresql://`` auf den psycopg-Treiber umstellen."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def build_store(cfg: Dict[str, Any]) -> NullStore:
    url = cfg.get("database_url")
    if not url:
        logger.warning("No DATABASE_URL set → running WITHOUT persistence.")
        return NullStore()
    try:
        store = SqlStore(normalize_url(url))
    except (SQLAlchemyError, ImportError):
        logger.error("Datenbank nicht nutzbar → running WITHOUT persistence.", exc_info=True)
        return NullStore()
    store.init_schema()
    return store
