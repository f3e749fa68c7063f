"""Institutional Inspections - Data Models"""
from .db_models import (
    # Enums
    RiskLevel, ResponseValue, InspectionStatus, SampleStatus, PackingType,
    PhotoCategory, AuditAction,
)
from .domain import (
    # Catalog
    Pillar, Indicator, ThresholdConfig,
    # Scoring
    IndicatorResponse, RecordedResponse, Deviation, RiskScoreResult,
    # Aggregate
    InstitutionDetails, DraftInspection, SubmittedInspection, Inspection,
    Sample, Photo, AuditEvent, InspectionDetails, InspectionStats,
)

__all__ = [
    "RiskLevel", "ResponseValue", "InspectionStatus", "SampleStatus", "PackingType",
    "PhotoCategory", "AuditAction",
    "Pillar", "Indicator", "ThresholdConfig",
    "IndicatorResponse", "RecordedResponse", "Deviation", "RiskScoreResult",
    "InstitutionDetails", "DraftInspection", "SubmittedInspection", "Inspection",
    "Sample", "Photo", "AuditEvent", "InspectionDetails", "InspectionStats",
]
