"""
Churn risk score returned by the scorer and persisted per member.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Severity(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskFactor(BaseModel):
    """One point-weighted contributor to the score."""
    name: str
    severity: Severity
    points: int
    description: str


class RiskScore(BaseModel):
    member_id: Optional[str] = None
    score: int = Field(ge=0, le=100)
    level: RiskLevel
    factors: list[RiskFactor] = []
    confidence: Confidence
    calculated_at: datetime
    model_version: str = "1.0"
