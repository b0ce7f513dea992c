from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class NormalizedInvoice(BaseModel):
    format: str = Field(..., description="ubl | cii | ocr")
    date: Optional[str] = Field(None, description="Rechnungsdatum, YYYY-MM-DD")
    supplier: Optional[str] = Field(None, description="Lieferant/Absender")
    currency: Optional[str] = None
    net: Optional[float] = None
    vat: Optional[float] = None
    gross: Optional[float] = None


class IngestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(..., alias="fileName", min_length=1)
    mime: str = Field(..., min_length=1)
    data_base64: str = Field(..., alias="dataBase64", min_length=1)
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    user_id: Optional[str] = Field(None, alias="userId")


class TextIngestRequest(BaseModel):
    """Von einer Client-OCR erkannter Text."""

    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(..., alias="fileName", min_length=1)
    text: str = Field(..., min_length=1)
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    user_id: Optional[str] = Field(None, alias="userId")


class FeedbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: Optional[str] = Field(None, alias="requestId")
    file_name: str = Field(..., alias="fileName", min_length=1)
    verdict: Literal["accepted", "corrected"]
    original: Dict[str, Any]
    corrected: Optional[Dict[str, Any]] = None
    timestamp: str


class IngestionRecord(BaseModel):
    id: str
    created_at: datetime
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    file_name: str
    mime: Optional[str] = None
    raw_text: Optional[str] = ""
    fields: Optional[NormalizedInvoice] = None
    route: str
    last_request_id: Optional[str] = None


class FeedbackEvent(BaseModel):
    id: str
    created_at: datetime
    request_id: Optional[str] = None
    file_name: str
    verdict: Literal["accepted", "corrected"]
    original: Dict[str, Any]
    corrected: Optional[Dict[str, Any]] = None
