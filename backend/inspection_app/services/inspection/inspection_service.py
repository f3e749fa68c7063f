"""
Inspection Service

Main orchestrator for institutional food-safety inspections.
Coordinates lifecycle guard, scoring engine, repository and audit trail.

Key responsibilities:
- Create drafts (code generation + config snapshot)
- Record responses and refresh draft scoring (state unchanged)
- Submit inspections (state change, terminal)
- Append samples and photos while in draft
- Read-only aggregate fetch with audit history

Control flow for every mutation:
    load -> lifecycle guard -> scoring -> persist (one transaction) -> audit record
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import uuid4

from sqlalchemy.orm import Session

from ...errors import NotFoundError, ImmutabilityViolation, DuplicateKeyError, InvalidInputError
from ...models.db_models import (
    AuditAction, InspectionStatus, PackingType, PhotoCategory, ResponseValue, utcnow,
)
from ...models.domain import (
    Inspection, DraftInspection, SubmittedInspection, InstitutionDetails, Indicator,
    IndicatorResponse, RecordedResponse, RiskScoreResult, Sample, Photo,
    InspectionDetails, InspectionStats,
)
from ..audit_trail import AuditTrailRecorder
from ..catalog import CatalogService, snapshot_config
from ..scoring import calculate_risk_score, score_recorded_responses
from ..scoring.risk_engine import UNKNOWN_PILLAR
from .code_generator import InspectionCodeGenerator
from .lifecycle import (
    InspectionLifecycle, SUBMIT_RESPONSES, SUBMIT, ADD_SAMPLE, ADD_PHOTO, DISPATCH_SAMPLE,
)
from .repository import InspectionRepository

logger = logging.getLogger(__name__)

DEFAULT_DISTRICT_ID = "default-district-00000000"
MAX_CODE_ATTEMPTS = 5

RESPONSIBLE_PERSON_ROLES = ("head_of_institution", "incharge_warden", "contractor_cook_service_provider")

ResponseInput = Union[IndicatorResponse, Dict[str, Any]]


def _as_response(value: ResponseInput) -> IndicatorResponse:
    if isinstance(value, IndicatorResponse):
        return value
    return IndicatorResponse.from_dict(value)


class InspectionService:
    """
    Inspection orchestrator.

    One instance per request/session. The audit recorder is process-wide and
    injected.
    """

    def __init__(self, db: Session, recorder: AuditTrailRecorder):
        self.db = db
        self.recorder = recorder
        self.catalog = CatalogService(db)
        self.repository = InspectionRepository(db)
        self.lifecycle = InspectionLifecycle()
        self.codes = InspectionCodeGenerator(
            self.repository.count_in_district, self.repository.last_sequence_for_prefix,
        )

    def _load(self, inspection_id: str) -> Inspection:
        inspection = self.repository.get_inspection(inspection_id)
        if inspection is None:
            raise NotFoundError(f"Inspection not found: {inspection_id}", details={"inspection_id": inspection_id})
        return inspection

    # =========================================================================
    # CATALOG & PREVIEW (read-only)
    # =========================================================================

    def get_form_config(self) -> Dict[str, Any]:
        return self.catalog.get_form_config()

    def calculate_risk_score(self, responses: Iterable[ResponseInput]) -> RiskScoreResult:
        """Preview against the live catalog and live thresholds. Nothing is stored."""
        return calculate_risk_score(
            [_as_response(r) for r in responses],
            self.catalog.get_all_indicators(),
            self.catalog.get_all_pillars(),
            self.catalog.get_thresholds(),
        )

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_inspection(self, data: Dict[str, Any]) -> DraftInspection:
        """
        Create a draft inspection.

        Args:
            data: institution_name, institution_address, officer_id,
                inspection_date (required); district_id, institution_type_id,
                jurisdiction_id, latitude, longitude and the responsible
                persons (optional)

        Returns:
            The new DraftInspection, with its config snapshot

        Raises:
            InvalidInputError: a required field is missing or blank
        """
        for key in ("institution_name", "institution_address", "officer_id", "inspection_date"):
            if not str(data.get(key) or "").strip():
                raise InvalidInputError(f"{key} is required", details={"field": key})

        district_id = data.get("district_id") or DEFAULT_DISTRICT_ID
        officer_id = data["officer_id"]
        institution = InstitutionDetails(
            name=data["institution_name"],
            address=data["institution_address"],
            institution_type_id=data.get("institution_type_id"),
            jurisdiction_id=data.get("jurisdiction_id"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            responsible_persons={
                role: data[role] for role in RESPONSIBLE_PERSON_ROLES if data.get(role)
            },
        )
        config_snapshot = snapshot_config(self.catalog.get_all_config())

        inspection = None
        for attempt in range(MAX_CODE_ATTEMPTS):
            draft = DraftInspection(
                id=str(uuid4()),
                code=self.codes.generate(district_id, attempt),
                district_id=district_id,
                officer_id=officer_id,
                institution=institution,
                inspection_date=data["inspection_date"],
                config_snapshot=config_snapshot,
            )
            try:
                inspection = self.repository.insert_inspection(draft)
                break
            except DuplicateKeyError:
                logger.warning(f"Inspection code {draft.code} taken, retrying ({attempt + 1}/{MAX_CODE_ATTEMPTS})")
        if inspection is None:
            raise DuplicateKeyError(
                f"Could not allocate an inspection code for district {district_id}",
                details={"district_id": district_id, "attempts": MAX_CODE_ATTEMPTS},
            )

        self.recorder.record(
            inspection.id, AuditAction.CREATED, officer_id,
            {"inspection_code": inspection.code},
        )
        logger.info(f"Inspection {inspection.code} created by {officer_id}")
        return inspection

    # =========================================================================
    # RESPONSES (draft -> draft)
    # =========================================================================

    def submit_responses(
        self,
        inspection_id: str,
        responses: Iterable[ResponseInput],
        officer_id: str,
    ) -> RiskScoreResult:
        """
        Record indicator responses and refresh the draft's scoring.

        Responses are merged into what is already stored (one per indicator,
        the newest answer wins). The merged set is scored against the
        inspection's own config snapshot.

        Raises:
            NotFoundError: unknown inspection or indicator id
            ImmutabilityViolation: inspection already submitted
        """
        inspection = self._load(inspection_id)
        self.lifecycle.guard(inspection.status, SUBMIT_RESPONSES)

        incoming = [_as_response(r) for r in responses]
        indicators = {i.id: i for i in self.catalog.get_all_indicators()}
        unknown = sorted({r.indicator_id for r in incoming if r.indicator_id not in indicators})
        if unknown:
            raise NotFoundError(
                f"Unknown indicator ids: {', '.join(unknown)}",
                details={"indicator_ids": unknown},
            )
        pillar_names = {p.id: p.name for p in self.catalog.get_all_pillars()}

        recorded: Dict[str, RecordedResponse] = {}
        for response in incoming:
            recorded[response.indicator_id] = self._snapshot_response(
                response, indicators[response.indicator_id], pillar_names,
            )

        merged = {r.indicator_id: r for r in self.repository.get_responses(inspection_id)}
        merged.update(recorded)
        score = score_recorded_responses(merged.values(), inspection.thresholds)

        self.repository.save_responses(inspection_id, list(recorded.values()), score)

        self.recorder.record(
            inspection_id, AuditAction.RESPONSES_SUBMITTED, officer_id,
            {
                "total_score": score.total_score,
                "risk_classification": score.risk_classification.value,
                "responses": len(recorded),
            },
        )
        logger.info(
            f"Inspection {inspection.code}: {len(recorded)} responses recorded, "
            f"score {score.total_score} ({score.risk_classification.value})"
        )
        return score

    @staticmethod
    def _snapshot_response(response: IndicatorResponse, indicator: Indicator,
                           pillar_names: Dict[str, str]) -> RecordedResponse:
        return RecordedResponse(
            indicator_id=indicator.id,
            response=response.response,
            indicator_name=indicator.name,
            pillar_name=pillar_names.get(indicator.pillar_id, UNKNOWN_PILLAR),
            risk_level=indicator.risk_level,
            weight=indicator.weight,
            score_contribution=indicator.weight if response.response == ResponseValue.NO else 0.0,
            remarks=response.remarks,
            evidence_refs=response.evidence_refs,
        )

    # =========================================================================
    # SUBMIT (draft -> submitted, terminal)
    # =========================================================================

    def submit_inspection(
        self,
        inspection_id: str,
        officer_id: str,
        recommendations: Optional[List[str]] = None,
    ) -> SubmittedInspection:
        """
        Finalize an inspection. After this nothing on it can change.

        Raises:
            NotFoundError: unknown inspection
            ImmutabilityViolation: already submitted (including by a concurrent call)
            IncompleteDataError: fewer responses than catalog indicators
        """
        inspection = self._load(inspection_id)
        self.lifecycle.guard(inspection.status, SUBMIT)

        responses = self.repository.get_responses(inspection_id)
        required = len(self.catalog.get_all_indicators())
        self.lifecycle.check_completeness(len(responses), required)

        score = score_recorded_responses(responses, inspection.thresholds)
        submitted_at = utcnow()
        updated = self.repository.mark_submitted_if_draft(
            inspection_id, score, recommendations or [], submitted_at,
        )
        if updated == 0:
            # Lost the race: someone else submitted between our read and write
            if self.repository.get_inspection(inspection_id) is None:
                raise NotFoundError(f"Inspection not found: {inspection_id}", details={"inspection_id": inspection_id})
            raise ImmutabilityViolation(
                "Inspection already submitted",
                details={"inspection_id": inspection_id, "status": InspectionStatus.SUBMITTED.value},
            )

        self.recorder.record(
            inspection_id, AuditAction.SUBMITTED, officer_id,
            {
                "total_score": score.total_score,
                "risk_classification": score.risk_classification.value,
            },
        )
        logger.info(
            f"Inspection {inspection.code} submitted by {officer_id}: "
            f"{score.risk_classification.value} risk, score {score.total_score}"
        )
        return self._load(inspection_id)

    # =========================================================================
    # SAMPLES & PHOTOS (draft only, append-only)
    # =========================================================================

    def add_sample(self, inspection_id: str, sample_data: Dict[str, Any], officer_id: str) -> Sample:
        inspection = self._load(inspection_id)
        self.lifecycle.guard(inspection.status, ADD_SAMPLE)

        sample = self.repository.add_sample(Sample(
            id=str(uuid4()),
            inspection_id=inspection_id,
            sample_name=sample_data["sample_name"],
            sample_code=sample_data["sample_code"],
            place_of_collection=sample_data["place_of_collection"],
            packing_type=PackingType(sample_data["packing_type"]),
            collection_datetime=sample_data["collection_datetime"],
            witness_name=sample_data["witness_name"],
            witness_address=sample_data["witness_address"],
            witness_mobile=sample_data["witness_mobile"],
            photo_refs=tuple(sample_data.get("photo_refs") or ()),
        ))

        self.recorder.record(
            inspection_id, AuditAction.SAMPLE_ADDED, officer_id,
            {"sample_code": sample.sample_code},
        )
        return sample

    def dispatch_sample(
        self,
        inspection_id: str,
        sample_id: str,
        lab_name: str,
        officer_id: str,
        dispatched_at: Optional[datetime] = None,
    ) -> Sample:
        """
        Hand a collected sample over to a lab. Once dispatched it is frozen.

        Raises:
            NotFoundError: unknown inspection or sample
            ImmutabilityViolation: inspection submitted or sample already dispatched
        """
        inspection = self._load(inspection_id)
        self.lifecycle.guard(inspection.status, DISPATCH_SAMPLE)

        sample = self.repository.get_sample(sample_id)
        if sample is None or sample.inspection_id != inspection_id:
            raise NotFoundError(f"Sample not found: {sample_id}", details={"sample_id": sample_id})
        self.lifecycle.check_sample_mutable(sample)

        sample = self.repository.dispatch_sample(
            inspection_id, sample_id, lab_name, dispatched_at or utcnow(),
        )
        self.recorder.record(
            inspection_id, AuditAction.SAMPLE_DISPATCHED, officer_id,
            {"sample_code": sample.sample_code, "lab_name": lab_name},
        )
        return sample

    def add_photo(self, inspection_id: str, photo_data: Dict[str, Any], officer_id: str) -> Photo:
        inspection = self._load(inspection_id)
        self.lifecycle.guard(inspection.status, ADD_PHOTO)

        photo = self.repository.add_photo(Photo(
            id=str(uuid4()),
            inspection_id=inspection_id,
            filename=photo_data["filename"],
            original_name=photo_data["original_name"],
            file_url=photo_data["file_url"],
            category=PhotoCategory(photo_data["category"]),
            latitude=photo_data.get("latitude"),
            longitude=photo_data.get("longitude"),
            capture_timestamp=photo_data.get("capture_timestamp"),
            watermark_applied=bool(photo_data.get("watermark_applied", False)),
            watermark_details=photo_data.get("watermark_details"),
        ))

        self.recorder.record(
            inspection_id, AuditAction.PHOTO_ADDED, officer_id,
            {"category": photo.category.value},
        )
        return photo

    # =========================================================================
    # READS
    # =========================================================================

    def get_inspection_details(self, inspection_id: str) -> InspectionDetails:
        inspection = self._load(inspection_id)
        return InspectionDetails(
            inspection=inspection,
            responses=tuple(self.repository.get_responses(inspection_id)),
            samples=tuple(self.repository.get_samples(inspection_id)),
            photos=tuple(self.repository.get_photos(inspection_id)),
            history=tuple(self.recorder.history(inspection_id)),
        )

    def list_inspections(
        self,
        district_id: Optional[str] = None,
        officer_id: Optional[str] = None,
        status: Optional[InspectionStatus] = None,
        limit: int = 100,
    ) -> List[Inspection]:
        return self.repository.list_inspections(district_id, officer_id, status, limit)

    def get_stats(self, district_id: Optional[str] = None) -> InspectionStats:
        return self.repository.get_stats(district_id)

    def validate_editable(self, inspection_id: str) -> bool:
        inspection = self.repository.get_inspection(inspection_id)
        return inspection is not None and inspection.status == InspectionStatus.DRAFT
