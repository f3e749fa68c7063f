"""
Institutional Inspections - API Endpoints

Thin HTTP surface over InspectionService. Domain errors map to status codes
by kind; no business rule lives here.

Endpoints:
A) GET  /inspections/form-config              - Catalog + config bundle (read-only)
B) POST /inspections/calculate-score          - Live score preview (read-only)
C) POST /inspections                          - Create draft
D) POST /inspections/{id}/responses           - Record responses (draft only)
E) POST /inspections/{id}/submit              - Submit (terminal state change)
F) POST /inspections/{id}/samples             - Add surveillance sample (draft only)
G) POST /inspections/{id}/samples/{sid}/dispatch - Dispatch sample to lab (draft only)
H) POST /inspections/{id}/photos              - Add photo (draft only)
I) GET  /inspections/{id}                     - Full details with audit history
J) GET  /inspections                          - List
K) GET  /inspections/stats                    - Counts by status and risk
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import InspectionError
from ..models.db_models import InspectionStatus, PackingType, PhotoCategory, ResponseValue
from ..services.audit_trail import AuditTrailRecorder
from ..services.inspection import InspectionService


router = APIRouter(prefix="/inspections", tags=["Institutional Inspections"])


ERROR_STATUS = {
    "not_found": 404,
    "immutability_violation": 409,
    "duplicate_key": 409,
    "incomplete_data": 422,
    "invalid_input": 400,
    "persistence": 503,
}


def raise_http(error: InspectionError):
    raise HTTPException(status_code=ERROR_STATUS.get(error.kind, 400), detail=error.to_dict())


def get_audit_recorder(request: Request) -> AuditTrailRecorder:
    """Process-wide recorder created in the app lifespan."""
    return request.app.state.audit_recorder


def get_inspection_service(
    db: Session = Depends(get_db),
    recorder: AuditTrailRecorder = Depends(get_audit_recorder),
) -> InspectionService:
    return InspectionService(db, recorder)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ResponsiblePerson(BaseModel):
    name: str
    parent_name: Optional[str] = Field(None, description="S/o or D/o")
    age: Optional[int] = None
    mobile: Optional[str] = None
    fssai_license: Optional[str] = None


class CreateInspectionRequest(BaseModel):
    """Request to create a draft inspection."""
    institution_name: str = Field(..., min_length=1)
    institution_address: str = Field(..., min_length=1)
    officer_id: str = Field(..., min_length=1)
    inspection_date: datetime
    district_id: Optional[str] = Field(None, description="Defaults to the placeholder district")
    institution_type_id: Optional[str] = None
    jurisdiction_id: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    head_of_institution: Optional[ResponsiblePerson] = None
    incharge_warden: Optional[ResponsiblePerson] = None
    contractor_cook_service_provider: Optional[ResponsiblePerson] = None


class IndicatorResponseIn(BaseModel):
    indicator_id: str
    response: ResponseValue
    remarks: Optional[str] = None
    evidence_refs: List[str] = Field(default=[], description="Opaque evidence ids (stored images)")


class ScorePreviewRequest(BaseModel):
    responses: List[IndicatorResponseIn]


class SubmitResponsesRequest(BaseModel):
    officer_id: str
    responses: List[IndicatorResponseIn]


class SubmitInspectionRequest(BaseModel):
    officer_id: str
    recommendations: Optional[List[str]] = None


class AddSampleRequest(BaseModel):
    officer_id: str
    sample_name: str
    sample_code: str
    place_of_collection: str
    packing_type: PackingType
    collection_datetime: datetime
    witness_name: str
    witness_address: str
    witness_mobile: str
    photo_refs: List[str] = Field(default=[])


class DispatchSampleRequest(BaseModel):
    officer_id: str
    lab_name: str
    dispatched_at: Optional[datetime] = None


class AddPhotoRequest(BaseModel):
    officer_id: str
    filename: str
    original_name: str
    file_url: str
    category: PhotoCategory
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    capture_timestamp: Optional[datetime] = None
    watermark_applied: bool = False
    watermark_details: Optional[Dict[str, Any]] = None


def _response_dicts(responses: List[IndicatorResponseIn]) -> List[dict]:
    return [r.model_dump() for r in responses]


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/form-config")
def get_form_config(service: InspectionService = Depends(get_inspection_service)):
    """Pillars with their indicators, decoded config and photo categories."""
    try:
        return service.get_form_config()
    except InspectionError as e:
        raise_http(e)


@router.post("/calculate-score")
def calculate_score(
    request: ScorePreviewRequest,
    service: InspectionService = Depends(get_inspection_service),
):
    """Preview against live thresholds. Nothing is stored."""
    try:
        return service.calculate_risk_score(_response_dicts(request.responses)).to_dict()
    except InspectionError as e:
        raise_http(e)


@router.get("/stats")
def get_stats(
    district_id: Optional[str] = None,
    service: InspectionService = Depends(get_inspection_service),
):
    try:
        return jsonable_encoder(service.get_stats(district_id))
    except InspectionError as e:
        raise_http(e)


@router.post("", status_code=201)
def create_inspection(
    request: CreateInspectionRequest,
    service: InspectionService = Depends(get_inspection_service),
):
    try:
        inspection = service.create_inspection(request.model_dump(exclude_none=True))
        return jsonable_encoder(inspection)
    except InspectionError as e:
        raise_http(e)


@router.get("")
def list_inspections(
    district_id: Optional[str] = None,
    officer_id: Optional[str] = None,
    status: Optional[InspectionStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    service: InspectionService = Depends(get_inspection_service),
):
    try:
        return jsonable_encoder(service.list_inspections(district_id, officer_id, status, limit))
    except InspectionError as e:
        raise_http(e)


@router.get("/{inspection_id}")
def get_inspection_details(
    inspection_id: str,
    service: InspectionService = Depends(get_inspection_service),
):
    """Inspection with responses, samples, photos and ordered audit history."""
    try:
        return jsonable_encoder(service.get_inspection_details(inspection_id))
    except InspectionError as e:
        raise_http(e)


@router.post("/{inspection_id}/responses")
def submit_responses(
    inspection_id: str,
    request: SubmitResponsesRequest,
    service: InspectionService = Depends(get_inspection_service),
):
    """
    Record responses and refresh scoring (draft only).

    State: DRAFT -> DRAFT. Rejected with 409 once submitted.
    """
    try:
        result = service.submit_responses(
            inspection_id, _response_dicts(request.responses), request.officer_id,
        )
        return result.to_dict()
    except InspectionError as e:
        raise_http(e)


@router.post("/{inspection_id}/submit")
def submit_inspection(
    inspection_id: str,
    request: SubmitInspectionRequest,
    service: InspectionService = Depends(get_inspection_service),
):
    """
    Submit the inspection. Terminal.

    State: DRAFT -> SUBMITTED. 422 while responses are missing, 409 if
    already submitted.
    """
    try:
        inspection = service.submit_inspection(
            inspection_id, request.officer_id, request.recommendations,
        )
        return jsonable_encoder(inspection)
    except InspectionError as e:
        raise_http(e)


@router.post("/{inspection_id}/samples", status_code=201)
def add_sample(
    inspection_id: str,
    request: AddSampleRequest,
    service: InspectionService = Depends(get_inspection_service),
):
    try:
        sample = service.add_sample(
            inspection_id, request.model_dump(exclude={"officer_id"}), request.officer_id,
        )
        return jsonable_encoder(sample)
    except InspectionError as e:
        raise_http(e)


@router.post("/{inspection_id}/samples/{sample_id}/dispatch")
def dispatch_sample(
    inspection_id: str,
    sample_id: str,
    request: DispatchSampleRequest,
    service: InspectionService = Depends(get_inspection_service),
):
    try:
        sample = service.dispatch_sample(
            inspection_id, sample_id, request.lab_name, request.officer_id, request.dispatched_at,
        )
        return jsonable_encoder(sample)
    except InspectionError as e:
        raise_http(e)


@router.post("/{inspection_id}/photos", status_code=201)
def add_photo(
    inspection_id: str,
    request: AddPhotoRequest,
    service: InspectionService = Depends(get_inspection_service),
):
    try:
        photo = service.add_photo(
            inspection_id, request.model_dump(exclude={"officer_id"}), request.officer_id,
        )
        return jsonable_encoder(photo)
    except InspectionError as e:
        raise_http(e)
