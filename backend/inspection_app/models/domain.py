"""
Institutional Inspections - Domain Models

Plain dataclasses passed between services. ORM rows never leave the
repository; everything above it works with these types.

The inspection aggregate has two tagged variants:
- DraftInspection: accumulating responses, scoring fields may be unset
- SubmittedInspection: frozen, every scoring field present
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from .db_models import (
    RiskLevel, ResponseValue, InspectionStatus, SampleStatus, PackingType,
    PhotoCategory, AuditAction,
)


# =============================================================================
# CATALOG
# =============================================================================

@dataclass(frozen=True)
class Pillar:
    id: str
    name: str
    pillar_number: int = 0
    description: Optional[str] = None
    display_order: int = 0


@dataclass(frozen=True)
class Indicator:
    """A single weighted compliance check."""
    id: str
    pillar_id: str
    name: str
    weight: float
    risk_level: RiskLevel
    indicator_number: int = 0
    description: Optional[str] = None
    display_order: int = 0


LOW_RISK_MAX_SCORE = "low_risk_max_score"
MEDIUM_RISK_MAX_SCORE = "medium_risk_max_score"
HIGH_RISK_INDICATOR_THRESHOLD = "high_risk_indicator_threshold"

THRESHOLD_DEFAULTS = {
    LOW_RISK_MAX_SCORE: 15.0,
    MEDIUM_RISK_MAX_SCORE: 35.0,
    HIGH_RISK_INDICATOR_THRESHOLD: 5,
}


@dataclass(frozen=True)
class ThresholdConfig:
    """Classification bands plus the high-risk override count."""
    low_risk_max_score: float = THRESHOLD_DEFAULTS[LOW_RISK_MAX_SCORE]
    medium_risk_max_score: float = THRESHOLD_DEFAULTS[MEDIUM_RISK_MAX_SCORE]
    high_risk_indicator_threshold: int = THRESHOLD_DEFAULTS[HIGH_RISK_INDICATOR_THRESHOLD]

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "ThresholdConfig":
        """Build from a decoded config map or a stored snapshot. Missing keys fall back to defaults."""
        def pick(key):
            value = values.get(key)
            return THRESHOLD_DEFAULTS[key] if value is None else value

        return cls(
            low_risk_max_score=float(pick(LOW_RISK_MAX_SCORE)),
            medium_risk_max_score=float(pick(MEDIUM_RISK_MAX_SCORE)),
            high_risk_indicator_threshold=int(pick(HIGH_RISK_INDICATOR_THRESHOLD)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            LOW_RISK_MAX_SCORE: self.low_risk_max_score,
            MEDIUM_RISK_MAX_SCORE: self.medium_risk_max_score,
            HIGH_RISK_INDICATOR_THRESHOLD: self.high_risk_indicator_threshold,
        }


# =============================================================================
# RESPONSES & SCORING
# =============================================================================

@dataclass(frozen=True)
class IndicatorResponse:
    """Officer answer as submitted (before persistence)."""
    indicator_id: str
    response: ResponseValue
    remarks: Optional[str] = None
    evidence_refs: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndicatorResponse":
        return cls(
            indicator_id=data["indicator_id"],
            response=ResponseValue(data["response"]),
            remarks=data.get("remarks"),
            evidence_refs=tuple(data.get("evidence_refs") or ()),
        )


@dataclass(frozen=True)
class RecordedResponse:
    """Persisted response with the indicator metadata copied at recording time."""
    indicator_id: str
    response: ResponseValue
    indicator_name: str
    pillar_name: str
    risk_level: RiskLevel
    weight: float
    score_contribution: float
    remarks: Optional[str] = None
    evidence_refs: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Deviation:
    """A non-compliant (NO) response with its indicator metadata."""
    indicator_id: str
    indicator_name: str
    pillar_name: str
    risk_level: RiskLevel
    weight: float
    remarks: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indicator_id": self.indicator_id,
            "indicator_name": self.indicator_name,
            "pillar_name": self.pillar_name,
            "risk_level": self.risk_level.value,
            "weight": self.weight,
            "remarks": self.remarks,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deviation":
        return cls(
            indicator_id=data["indicator_id"],
            indicator_name=data["indicator_name"],
            pillar_name=data["pillar_name"],
            risk_level=RiskLevel(data["risk_level"]),
            weight=data["weight"],
            remarks=data.get("remarks"),
        )


@dataclass(frozen=True)
class RiskScoreResult:
    total_score: float
    high_risk_count: int
    medium_risk_count: int
    low_risk_count: int
    risk_classification: RiskLevel
    deviations: Tuple[Deviation, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_score": self.total_score,
            "high_risk_count": self.high_risk_count,
            "medium_risk_count": self.medium_risk_count,
            "low_risk_count": self.low_risk_count,
            "risk_classification": self.risk_classification.value,
            "deviations": [d.to_dict() for d in self.deviations],
        }


# =============================================================================
# INSPECTION AGGREGATE
# =============================================================================

@dataclass(frozen=True)
class InstitutionDetails:
    name: str
    address: str
    institution_type_id: Optional[str] = None
    jurisdiction_id: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    # head_of_institution / incharge_warden / contractor_cook_service_provider
    responsible_persons: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DraftInspection:
    """Inspection still being filled in. Scoring fields are refreshed on every submit_responses."""
    id: str
    code: str
    district_id: str
    officer_id: str
    institution: InstitutionDetails
    inspection_date: datetime
    config_snapshot: Dict[str, Any]
    created_at: Optional[datetime] = None

    total_score: Optional[float] = None
    high_risk_count: int = 0
    medium_risk_count: int = 0
    low_risk_count: int = 0
    risk_classification: Optional[RiskLevel] = None
    deviations: List[Deviation] = field(default_factory=list)

    status: InspectionStatus = field(default=InspectionStatus.DRAFT, init=False)

    @property
    def thresholds(self) -> ThresholdConfig:
        return ThresholdConfig.from_mapping(self.config_snapshot)


@dataclass(frozen=True)
class SubmittedInspection:
    """Finalized inspection. Evidence-grade: nothing on it may change."""
    id: str
    code: str
    district_id: str
    officer_id: str
    institution: InstitutionDetails
    inspection_date: datetime
    config_snapshot: Dict[str, Any]
    total_score: float
    high_risk_count: int
    medium_risk_count: int
    low_risk_count: int
    risk_classification: RiskLevel
    deviations: Tuple[Deviation, ...]
    recommendations: Tuple[str, ...]
    submitted_at: datetime
    created_at: Optional[datetime] = None

    status: InspectionStatus = field(default=InspectionStatus.SUBMITTED, init=False)

    @property
    def thresholds(self) -> ThresholdConfig:
        return ThresholdConfig.from_mapping(self.config_snapshot)


Inspection = Union[DraftInspection, SubmittedInspection]


# =============================================================================
# CHILD RECORDS
# =============================================================================

@dataclass(frozen=True)
class Sample:
    id: str
    inspection_id: str
    sample_name: str
    sample_code: str
    place_of_collection: str
    packing_type: PackingType
    collection_datetime: datetime
    witness_name: str
    witness_address: str
    witness_mobile: str
    photo_refs: Tuple[str, ...] = ()
    status: SampleStatus = SampleStatus.COLLECTED
    lab_name: Optional[str] = None
    lab_dispatch_date: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Photo:
    id: str
    inspection_id: str
    filename: str
    original_name: str
    file_url: str
    category: PhotoCategory
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    capture_timestamp: Optional[datetime] = None
    watermark_applied: bool = False
    watermark_details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AuditEvent:
    """
    Audit trail entry.

    timestamp and sequence are stamped by the recorder's writer, in the order
    events were recorded.
    """
    id: str
    inspection_id: str
    action: AuditAction
    performed_by: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    sequence: Optional[int] = None


@dataclass(frozen=True)
class InspectionDetails:
    inspection: Inspection
    responses: Tuple[RecordedResponse, ...]
    samples: Tuple[Sample, ...]
    photos: Tuple[Photo, ...]
    history: Tuple[AuditEvent, ...]


@dataclass(frozen=True)
class InspectionStats:
    total: int = 0
    draft: int = 0
    submitted: int = 0
    high_risk: int = 0
    medium_risk: int = 0
    low_risk: int = 0
