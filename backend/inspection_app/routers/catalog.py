"""
Inspection Catalog Administration - API Endpoints

Maintains pillars, indicators and threshold config. Changes apply to new
inspections only; existing ones keep their snapshot.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import InspectionError
from ..models.db_models import RiskLevel
from ..services.catalog import CatalogService
from .inspections import raise_http


router = APIRouter(prefix="/catalog", tags=["Inspection Catalog"])


class UpdateConfigRequest(BaseModel):
    value: str
    updated_by: Optional[str] = None


class CreatePillarRequest(BaseModel):
    name: str
    pillar_number: int = Field(..., ge=1)
    description: Optional[str] = None
    display_order: Optional[int] = None


class CreateIndicatorRequest(BaseModel):
    pillar_id: str
    name: str
    indicator_number: int = Field(..., ge=1)
    risk_level: RiskLevel
    weight: float = Field(..., gt=0)
    description: Optional[str] = None
    display_order: Optional[int] = None


@router.get("/config")
def get_config(db: Session = Depends(get_db)):
    """Decoded live config (what a new inspection would snapshot)."""
    try:
        return CatalogService(db).get_decoded_config()
    except InspectionError as e:
        raise_http(e)


@router.put("/config/{config_key}")
def update_config(config_key: str, request: UpdateConfigRequest, db: Session = Depends(get_db)):
    try:
        entry = CatalogService(db).update_config(config_key, request.value, request.updated_by)
        return jsonable_encoder(entry)
    except InspectionError as e:
        raise_http(e)


@router.post("/pillars", status_code=201)
def create_pillar(request: CreatePillarRequest, db: Session = Depends(get_db)):
    try:
        pillar = CatalogService(db).create_pillar(
            name=request.name,
            pillar_number=request.pillar_number,
            description=request.description,
            display_order=request.display_order,
        )
        return jsonable_encoder(pillar)
    except InspectionError as e:
        raise_http(e)


@router.post("/indicators", status_code=201)
def create_indicator(request: CreateIndicatorRequest, db: Session = Depends(get_db)):
    try:
        indicator = CatalogService(db).create_indicator(
            pillar_id=request.pillar_id,
            name=request.name,
            indicator_number=request.indicator_number,
            risk_level=request.risk_level,
            weight=request.weight,
            description=request.description,
            display_order=request.display_order,
        )
        return jsonable_encoder(indicator)
    except InspectionError as e:
        raise_http(e)
