"""
Inspection Repository

The only code that touches inspection ORM rows. Everything it returns is a
domain dataclass.

Reads and writes follow the shared storage rules in database.py. On top of
those, every mutation of a draft first runs a conditional
`UPDATE inspections ... WHERE id = :id AND status = 'draft'` inside the same
transaction. Zero rows means the inspection is gone or already submitted,
and the whole transaction is abandoned. That is what closes the window
between the lifecycle guard's read and the write.
"""
import logging
from datetime import datetime
from typing import Callable, ContextManager, Dict, List, Optional, Sequence, TypeVar
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...database import read_with_retry, write_transaction
from ...errors import NotFoundError, ImmutabilityViolation, DuplicateKeyError
from ...models.db_models import (
    InspectionDB, InspectionResponseDB, SurveillanceSampleDB, InspectionPhotoDB,
    InspectionStatus, SampleStatus, RiskLevel, ResponseValue, PackingType,
    PhotoCategory, utcnow,
)
from ...models.domain import (
    Inspection, DraftInspection, SubmittedInspection, InstitutionDetails,
    RecordedResponse, Deviation, RiskScoreResult, Sample, Photo, InspectionStats,
)
from ...settings import PERSISTENCE_READ_RETRIES

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# ROW -> DOMAIN
# =============================================================================

def inspection_to_domain(row: InspectionDB) -> Inspection:
    institution = InstitutionDetails(
        name=row.institution_name,
        address=row.institution_address,
        institution_type_id=row.institution_type_id,
        jurisdiction_id=row.jurisdiction_id,
        latitude=row.latitude,
        longitude=row.longitude,
        responsible_persons=dict(row.responsible_persons or {}),
    )
    deviations = [Deviation.from_dict(d) for d in (row.deviations or [])]
    risk_classification = RiskLevel(row.risk_classification) if row.risk_classification else None

    if InspectionStatus(row.status) == InspectionStatus.SUBMITTED:
        return SubmittedInspection(
            id=row.id,
            code=row.inspection_code,
            district_id=row.district_id,
            officer_id=row.officer_id,
            institution=institution,
            inspection_date=row.inspection_date,
            config_snapshot=dict(row.config_snapshot or {}),
            total_score=row.total_score,
            high_risk_count=row.high_risk_count,
            medium_risk_count=row.medium_risk_count,
            low_risk_count=row.low_risk_count,
            risk_classification=risk_classification,
            deviations=tuple(deviations),
            recommendations=tuple(row.recommendations or ()),
            submitted_at=row.submitted_at,
            created_at=row.created_at,
        )

    return DraftInspection(
        id=row.id,
        code=row.inspection_code,
        district_id=row.district_id,
        officer_id=row.officer_id,
        institution=institution,
        inspection_date=row.inspection_date,
        config_snapshot=dict(row.config_snapshot or {}),
        created_at=row.created_at,
        total_score=row.total_score,
        high_risk_count=row.high_risk_count or 0,
        medium_risk_count=row.medium_risk_count or 0,
        low_risk_count=row.low_risk_count or 0,
        risk_classification=risk_classification,
        deviations=deviations,
    )


def response_to_domain(row: InspectionResponseDB) -> RecordedResponse:
    return RecordedResponse(
        indicator_id=row.indicator_id,
        response=ResponseValue(row.response),
        indicator_name=row.indicator_name,
        pillar_name=row.pillar_name,
        risk_level=RiskLevel(row.risk_level),
        weight=float(row.weight),
        score_contribution=float(row.score_contribution or 0),
        remarks=row.remarks,
        evidence_refs=tuple(row.evidence_refs or ()),
        created_at=row.created_at,
    )


def sample_to_domain(row: SurveillanceSampleDB) -> Sample:
    return Sample(
        id=row.id,
        inspection_id=row.inspection_id,
        sample_name=row.sample_name,
        sample_code=row.sample_code,
        place_of_collection=row.place_of_collection,
        packing_type=PackingType(row.packing_type),
        collection_datetime=row.collection_datetime,
        witness_name=row.witness_name,
        witness_address=row.witness_address,
        witness_mobile=row.witness_mobile,
        photo_refs=tuple(row.photo_refs or ()),
        status=SampleStatus(row.status),
        lab_name=row.lab_name,
        lab_dispatch_date=row.lab_dispatch_date,
        created_at=row.created_at,
    )


def photo_to_domain(row: InspectionPhotoDB) -> Photo:
    return Photo(
        id=row.id,
        inspection_id=row.inspection_id,
        filename=row.filename,
        original_name=row.original_name,
        file_url=row.file_url,
        category=PhotoCategory(row.category),
        latitude=row.latitude,
        longitude=row.longitude,
        capture_timestamp=row.capture_timestamp,
        watermark_applied=bool(row.watermark_applied),
        watermark_details=row.watermark_details,
        created_at=row.created_at,
    )


def _scoring_columns(score: RiskScoreResult) -> Dict[str, object]:
    return {
        InspectionDB.total_score: score.total_score,
        InspectionDB.high_risk_count: score.high_risk_count,
        InspectionDB.medium_risk_count: score.medium_risk_count,
        InspectionDB.low_risk_count: score.low_risk_count,
        InspectionDB.risk_classification: score.risk_classification,
        InspectionDB.deviations: [d.to_dict() for d in score.deviations],
    }


class InspectionRepository:
    """SQLAlchemy persistence provider for the inspection aggregate."""

    def __init__(self, db: Session, read_retries: int = PERSISTENCE_READ_RETRIES):
        self.db = db
        self.read_retries = max(0, read_retries)

    # =========================================================================
    # TRANSACTION HELPERS
    # =========================================================================

    def _read(self, description: str, query: Callable[[], T]) -> T:
        return read_with_retry(self.db, description, query, self.read_retries)

    def _transaction(self, description: str) -> ContextManager[Session]:
        return write_transaction(self.db, description)

    def _claim_draft(self, inspection_id: str) -> None:
        """
        Conditional touch of the inspection row, inside the caller's transaction.

        Raises:
            NotFoundError: no such inspection
            ImmutabilityViolation: inspection is no longer a draft
        """
        updated = self.db.query(InspectionDB).filter(
            InspectionDB.id == inspection_id,
            InspectionDB.status == InspectionStatus.DRAFT,
        ).update({InspectionDB.updated_at: utcnow()}, synchronize_session=False)
        if updated == 0:
            self._raise_not_draft(inspection_id)

    def _raise_not_draft(self, inspection_id: str) -> None:
        exists = self.db.query(InspectionDB.id).filter(InspectionDB.id == inspection_id).first()
        if not exists:
            raise NotFoundError(f"Inspection not found: {inspection_id}", details={"inspection_id": inspection_id})
        raise ImmutabilityViolation(
            "Inspection already submitted",
            details={"inspection_id": inspection_id, "status": InspectionStatus.SUBMITTED.value},
        )

    # =========================================================================
    # INSPECTIONS
    # =========================================================================

    def get_inspection(self, inspection_id: str) -> Optional[Inspection]:
        def query():
            row = self.db.query(InspectionDB).filter(InspectionDB.id == inspection_id).first()
            return inspection_to_domain(row) if row else None
        return self._read("load inspection", query)

    def count_in_district(self, district_id: str) -> int:
        return self._read(
            "count district inspections",
            lambda: self.db.query(func.count(InspectionDB.id)).filter(
                InspectionDB.district_id == district_id
            ).scalar() or 0,
        )

    def last_sequence_for_prefix(self, prefix: str) -> int:
        """
        Highest numeric suffix among codes starting with prefix, 0 if none.
        """
        def query():
            codes = self.db.query(InspectionDB.inspection_code).filter(
                InspectionDB.inspection_code.like(f"{prefix}%")
            ).all()
            suffixes = [code[len(prefix):] for (code,) in codes]
            return max((int(s) for s in suffixes if s.isdigit()), default=0)
        return self._read("find latest inspection code", query)

    def insert_inspection(self, draft: DraftInspection) -> DraftInspection:
        """
        Insert a new draft.

        Raises:
            DuplicateKeyError: inspection code already exists
        """
        row = InspectionDB(
            id=draft.id,
            inspection_code=draft.code,
            institution_type_id=draft.institution.institution_type_id,
            institution_name=draft.institution.name,
            institution_address=draft.institution.address,
            district_id=draft.district_id,
            jurisdiction_id=draft.institution.jurisdiction_id,
            latitude=draft.institution.latitude,
            longitude=draft.institution.longitude,
            inspection_date=draft.inspection_date,
            officer_id=draft.officer_id,
            responsible_persons=dict(draft.institution.responsible_persons),
            config_snapshot=draft.config_snapshot,
            status=InspectionStatus.DRAFT,
            deviations=[],
            recommendations=[],
        )
        with self._transaction("create inspection"):
            self.db.add(row)
        return inspection_to_domain(row)

    def list_inspections(
        self,
        district_id: Optional[str] = None,
        officer_id: Optional[str] = None,
        status: Optional[InspectionStatus] = None,
        limit: int = 100,
    ) -> List[Inspection]:
        def query():
            q = self.db.query(InspectionDB)
            if district_id:
                q = q.filter(InspectionDB.district_id == district_id)
            if officer_id:
                q = q.filter(InspectionDB.officer_id == officer_id)
            if status:
                q = q.filter(InspectionDB.status == status)
            rows = q.order_by(InspectionDB.created_at.desc()).limit(limit).all()
            return [inspection_to_domain(r) for r in rows]
        return self._read("list inspections", query)

    def get_stats(self, district_id: Optional[str] = None) -> InspectionStats:
        def query():
            q = self.db.query(
                InspectionDB.status, InspectionDB.risk_classification, func.count(InspectionDB.id)
            )
            if district_id:
                q = q.filter(InspectionDB.district_id == district_id)
            return q.group_by(InspectionDB.status, InspectionDB.risk_classification).all()

        counts = {"total": 0, "draft": 0, "submitted": 0, "high_risk": 0, "medium_risk": 0, "low_risk": 0}
        for status, classification, count in self._read("compute inspection stats", query):
            counts["total"] += count
            counts[InspectionStatus(status).value] += count
            if classification:
                counts[f"{RiskLevel(classification).value}_risk"] += count
        return InspectionStats(**counts)

    def mark_submitted_if_draft(
        self,
        inspection_id: str,
        score: RiskScoreResult,
        recommendations: Sequence[str],
        submitted_at: datetime,
    ) -> int:
        """
        Flip draft -> submitted and write the final scoring, atomically.

        Returns:
            Rows affected: 1 if this call won, 0 if the row is absent or
            already submitted
        """
        values = _scoring_columns(score)
        values.update({
            InspectionDB.status: InspectionStatus.SUBMITTED,
            InspectionDB.submitted_at: submitted_at,
            InspectionDB.recommendations: list(recommendations),
            InspectionDB.updated_at: submitted_at,
        })
        with self._transaction("submit inspection"):
            updated = self.db.query(InspectionDB).filter(
                InspectionDB.id == inspection_id,
                InspectionDB.status == InspectionStatus.DRAFT,
            ).update(values, synchronize_session=False)
        return updated

    # =========================================================================
    # RESPONSES
    # =========================================================================

    def get_responses(self, inspection_id: str) -> List[RecordedResponse]:
        def query():
            rows = self.db.query(InspectionResponseDB).filter(
                InspectionResponseDB.inspection_id == inspection_id
            ).order_by(InspectionResponseDB.created_at, InspectionResponseDB.id).all()
            return [response_to_domain(r) for r in rows]
        return self._read("load responses", query)

    def save_responses(
        self,
        inspection_id: str,
        records: Sequence[RecordedResponse],
        score: RiskScoreResult,
    ) -> None:
        """
        Upsert responses (one per indicator) and the draft's scoring, in one transaction.

        Raises:
            NotFoundError / ImmutabilityViolation: inspection is not a draft anymore
        """
        with self._transaction("save responses"):
            self._claim_draft(inspection_id)

            existing = {
                row.indicator_id: row
                for row in self.db.query(InspectionResponseDB).filter(
                    InspectionResponseDB.inspection_id == inspection_id
                ).all()
            }
            for record in records:
                row = existing.get(record.indicator_id)
                if row is None:
                    row = InspectionResponseDB(
                        id=str(uuid4()),
                        inspection_id=inspection_id,
                        indicator_id=record.indicator_id,
                    )
                    self.db.add(row)
                    existing[record.indicator_id] = row
                row.response = record.response
                row.remarks = record.remarks
                row.evidence_refs = list(record.evidence_refs)
                row.indicator_name = record.indicator_name
                row.pillar_name = record.pillar_name
                row.risk_level = record.risk_level
                row.weight = record.weight
                row.score_contribution = record.score_contribution

            self.db.query(InspectionDB).filter(
                InspectionDB.id == inspection_id
            ).update(_scoring_columns(score), synchronize_session=False)

    # =========================================================================
    # SAMPLES & PHOTOS (append-only)
    # =========================================================================

    def get_samples(self, inspection_id: str) -> List[Sample]:
        def query():
            rows = self.db.query(SurveillanceSampleDB).filter(
                SurveillanceSampleDB.inspection_id == inspection_id
            ).order_by(SurveillanceSampleDB.created_at, SurveillanceSampleDB.id).all()
            return [sample_to_domain(r) for r in rows]
        return self._read("load samples", query)

    def get_sample(self, sample_id: str) -> Optional[Sample]:
        def query():
            row = self.db.query(SurveillanceSampleDB).filter(SurveillanceSampleDB.id == sample_id).first()
            return sample_to_domain(row) if row else None
        return self._read("load sample", query)

    def add_sample(self, sample: Sample) -> Sample:
        row = SurveillanceSampleDB(
            id=sample.id,
            inspection_id=sample.inspection_id,
            sample_name=sample.sample_name,
            sample_code=sample.sample_code,
            place_of_collection=sample.place_of_collection,
            packing_type=sample.packing_type,
            collection_datetime=sample.collection_datetime,
            witness_name=sample.witness_name,
            witness_address=sample.witness_address,
            witness_mobile=sample.witness_mobile,
            photo_refs=list(sample.photo_refs),
            status=SampleStatus.COLLECTED,
        )
        with self._transaction("add sample"):
            self._claim_draft(sample.inspection_id)
            self.db.add(row)
        return sample_to_domain(row)

    def dispatch_sample(self, inspection_id: str, sample_id: str, lab_name: str,
                        dispatched_at: datetime) -> Sample:
        """
        Mark a collected sample as dispatched to a lab.

        Raises:
            ImmutabilityViolation: inspection submitted or sample already dispatched
        """
        with self._transaction("dispatch sample"):
            self._claim_draft(inspection_id)
            updated = self.db.query(SurveillanceSampleDB).filter(
                SurveillanceSampleDB.id == sample_id,
                SurveillanceSampleDB.inspection_id == inspection_id,
                SurveillanceSampleDB.status == SampleStatus.COLLECTED,
            ).update({
                SurveillanceSampleDB.status: SampleStatus.DISPATCHED,
                SurveillanceSampleDB.lab_name: lab_name,
                SurveillanceSampleDB.lab_dispatch_date: dispatched_at,
                SurveillanceSampleDB.updated_at: utcnow(),
            }, synchronize_session=False)
            if updated == 0:
                exists = self.db.query(SurveillanceSampleDB.id).filter(
                    SurveillanceSampleDB.id == sample_id,
                    SurveillanceSampleDB.inspection_id == inspection_id,
                ).first()
                if not exists:
                    raise NotFoundError(f"Sample not found: {sample_id}", details={"sample_id": sample_id})
                raise ImmutabilityViolation(
                    "Sample already dispatched", details={"sample_id": sample_id},
                )
        return self.get_sample(sample_id)

    def get_photos(self, inspection_id: str) -> List[Photo]:
        def query():
            rows = self.db.query(InspectionPhotoDB).filter(
                InspectionPhotoDB.inspection_id == inspection_id
            ).order_by(InspectionPhotoDB.created_at, InspectionPhotoDB.id).all()
            return [photo_to_domain(r) for r in rows]
        return self._read("load photos", query)

    def add_photo(self, photo: Photo) -> Photo:
        row = InspectionPhotoDB(
            id=photo.id,
            inspection_id=photo.inspection_id,
            filename=photo.filename,
            original_name=photo.original_name,
            file_url=photo.file_url,
            category=photo.category,
            latitude=photo.latitude,
            longitude=photo.longitude,
            capture_timestamp=photo.capture_timestamp,
            watermark_applied=photo.watermark_applied,
            watermark_details=photo.watermark_details,
        )
        with self._transaction("add photo"):
            self._claim_draft(photo.inspection_id)
            self.db.add(row)
        return photo_to_domain(row)
