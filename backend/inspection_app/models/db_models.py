"""
Institutional Inspections - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Boolean,
    Enum as SQLEnum, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are stored as UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class RiskLevel(str, Enum):
    """Risk level of a single indicator, and the overall classification."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ResponseValue(str, Enum):
    """Officer answer for an indicator. Only NO is non-compliant."""
    YES = "yes"
    NO = "no"
    NA = "na"


class InspectionStatus(str, Enum):
    """Inspection lifecycle. SUBMITTED is terminal."""
    DRAFT = "draft"
    SUBMITTED = "submitted"


class SampleStatus(str, Enum):
    """Surveillance sample custody state."""
    COLLECTED = "collected"
    DISPATCHED = "dispatched"


class PackingType(str, Enum):
    PACKED = "packed"
    LOOSE = "loose"


class PhotoCategory(str, Enum):
    """Mandatory photo evidence categories."""
    KITCHEN = "kitchen"
    STORAGE = "storage"
    COOKING_AREA = "cooking_area"
    SERVING_AREA = "serving_area"
    WATER_SOURCE = "water_source"
    WASTE_DISPOSAL = "waste_disposal"


class AuditAction(str, Enum):
    """Actions recorded in the inspection audit trail."""
    CREATED = "created"
    RESPONSES_SUBMITTED = "responses_submitted"
    SUBMITTED = "submitted"
    SAMPLE_ADDED = "sample_added"
    SAMPLE_DISPATCHED = "sample_dispatched"
    PHOTO_ADDED = "photo_added"


# =============================================================================
# CATALOG (reference data, admin-maintained)
# =============================================================================

class PillarDB(Base):
    """Grouping of indicators (e.g. Storage & Temperature Control)."""
    __tablename__ = "inspection_pillars"

    id = Column(String(36), primary_key=True)  # UUID
    pillar_number = Column(Integer, nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    indicators = relationship("IndicatorDB", back_populates="pillar")


class IndicatorDB(Base):
    """Weighted compliance check. A NO answer adds `weight` to the risk score."""
    __tablename__ = "inspection_indicators"

    id = Column(String(36), primary_key=True)  # UUID
    pillar_id = Column(String(36), ForeignKey("inspection_pillars.id"), nullable=False, index=True)
    indicator_number = Column(Integer, nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    risk_level = Column(SQLEnum(RiskLevel), nullable=False)
    weight = Column(Float, nullable=False)
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    pillar = relationship("PillarDB", back_populates="indicators")


class InspectionConfigDB(Base):
    """
    Generic key/value threshold row.

    config_type is one of number | boolean | json | string and drives decoding.
    """
    __tablename__ = "inspection_config"

    id = Column(String(36), primary_key=True)  # UUID
    config_key = Column(String(100), unique=True, nullable=False)
    config_value = Column(Text, nullable=False)
    config_type = Column(String(20), nullable=False, default="string")
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    updated_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# INSPECTION AGGREGATE
# =============================================================================

class InspectionDB(Base):
    """
    Institutional inspection record.

    IMMUTABILITY: once status is SUBMITTED nothing on this row or its children
    changes. config_snapshot is written once at creation.
    """
    __tablename__ = "inspections"

    id = Column(String(36), primary_key=True)  # UUID
    inspection_code = Column(String(40), unique=True, nullable=False)

    # Institution details
    institution_type_id = Column(String(36), nullable=True)
    institution_name = Column(Text, nullable=False)
    institution_address = Column(Text, nullable=False)
    district_id = Column(String(36), nullable=False, index=True)
    jurisdiction_id = Column(String(36), nullable=True)
    latitude = Column(String(32), nullable=True)
    longitude = Column(String(32), nullable=True)

    # Inspection context
    inspection_date = Column(DateTime, nullable=False)
    officer_id = Column(String(36), nullable=False, index=True)
    # Format: {"head_of_institution": {...}, "incharge_warden": {...}, ...}
    responsible_persons = Column(JSON, nullable=True, default=dict)

    # Risk assessment results
    total_score = Column(Float, nullable=True)
    high_risk_count = Column(Integer, nullable=False, default=0)
    medium_risk_count = Column(Integer, nullable=False, default=0)
    low_risk_count = Column(Integer, nullable=False, default=0)
    risk_classification = Column(SQLEnum(RiskLevel), nullable=True)
    deviations = Column(JSON, nullable=True, default=list)
    recommendations = Column(JSON, nullable=True, default=list)

    # Threshold values in effect at creation time
    config_snapshot = Column(JSON, nullable=False)

    status = Column(SQLEnum(InspectionStatus), nullable=False, default=InspectionStatus.DRAFT, index=True)
    submitted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    responses = relationship(
        "InspectionResponseDB", back_populates="inspection",
        order_by="InspectionResponseDB.created_at",
    )
    samples = relationship(
        "SurveillanceSampleDB", back_populates="inspection",
        order_by="SurveillanceSampleDB.created_at",
    )
    photos = relationship(
        "InspectionPhotoDB", back_populates="inspection",
        order_by="InspectionPhotoDB.created_at",
    )


class InspectionResponseDB(Base):
    """
    One answer per indicator per inspection.

    Indicator name, pillar, risk level and weight are copied at recording time
    so a later catalog edit cannot change what the officer answered against.
    """
    __tablename__ = "inspection_responses"
    __table_args__ = (
        UniqueConstraint("inspection_id", "indicator_id", name="uq_response_inspection_indicator"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    inspection_id = Column(String(36), ForeignKey("inspections.id"), nullable=False, index=True)
    indicator_id = Column(String(36), nullable=False)

    response = Column(SQLEnum(ResponseValue), nullable=False)
    remarks = Column(Text, nullable=True)
    evidence_refs = Column(JSON, nullable=False, default=list)

    # Snapshot at time of response
    indicator_name = Column(Text, nullable=False)
    pillar_name = Column(Text, nullable=False)
    risk_level = Column(SQLEnum(RiskLevel), nullable=False)
    weight = Column(Float, nullable=False)
    score_contribution = Column(Float, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow)

    inspection = relationship("InspectionDB", back_populates="responses")


class SurveillanceSampleDB(Base):
    """Surveillance sample collected during an inspection (append-only)."""
    __tablename__ = "surveillance_samples"

    id = Column(String(36), primary_key=True)  # UUID
    inspection_id = Column(String(36), ForeignKey("inspections.id"), nullable=False, index=True)

    sample_name = Column(Text, nullable=False)
    sample_code = Column(String(64), nullable=False)
    place_of_collection = Column(Text, nullable=False)
    packing_type = Column(SQLEnum(PackingType), nullable=False)
    collection_datetime = Column(DateTime, nullable=False)

    # Witness details
    witness_name = Column(Text, nullable=False)
    witness_address = Column(Text, nullable=False)
    witness_mobile = Column(String(20), nullable=False)

    photo_refs = Column(JSON, nullable=False, default=list)

    status = Column(SQLEnum(SampleStatus), nullable=False, default=SampleStatus.COLLECTED)
    lab_name = Column(Text, nullable=True)
    lab_dispatch_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    inspection = relationship("InspectionDB", back_populates="samples")


class InspectionPhotoDB(Base):
    """Geo-tagged photo evidence (append-only)."""
    __tablename__ = "inspection_photos"

    id = Column(String(36), primary_key=True)  # UUID
    inspection_id = Column(String(36), ForeignKey("inspections.id"), nullable=False, index=True)

    filename = Column(Text, nullable=False)
    original_name = Column(Text, nullable=False)
    file_url = Column(Text, nullable=False)
    category = Column(SQLEnum(PhotoCategory), nullable=False)

    latitude = Column(String(32), nullable=True)
    longitude = Column(String(32), nullable=True)
    capture_timestamp = Column(DateTime, nullable=True)

    watermark_applied = Column(Boolean, nullable=False, default=False)
    watermark_details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    inspection = relationship("InspectionDB", back_populates="photos")


# =============================================================================
# AUDIT TRAIL (append-only - no updates or deletes)
# =============================================================================

class AuditEventDB(Base):
    """Immutable audit trail entry. Ordered by (timestamp, sequence)."""
    __tablename__ = "inspection_audit_events"
    __table_args__ = (
        Index("ix_audit_inspection_order", "inspection_id", "timestamp", "sequence"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    inspection_id = Column(String(36), nullable=False)
    action = Column(SQLEnum(AuditAction), nullable=False)
    performed_by = Column(String(36), nullable=False)
    details = Column(JSON, nullable=True)
    timestamp = Column(DateTime, nullable=False)
    sequence = Column(Integer, nullable=False)
