from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ConversionStage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    STAGED = "staged"
    NORMALIZED = "normalized"
    CONVERTED = "converted"
    STORED = "stored"
    LINKED = "linked"
    FAILED = "failed"


class ConversionResponse(BaseModel):
    checksum: str
    filename: str
    cache_hit: bool
    url: str
    expires_at: datetime


class ErrorResponse(BaseModel):
    detail: str
    last_stage: Optional[ConversionStage] = None
