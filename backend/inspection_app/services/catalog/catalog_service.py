"""
Indicator Catalog Service

Read side of the reference data (pillars, indicators, thresholds) plus the
small administrative surface used to maintain it.

The scoring path only ever reads from here. Catalog edits never reach an
existing inspection: responses snapshot indicator metadata and inspections
snapshot thresholds at creation.
"""
import logging
from typing import Any, Callable, ContextManager, Dict, List, Optional, TypeVar
from uuid import uuid4

from sqlalchemy.orm import Session

from ...database import read_with_retry, write_transaction
from ...errors import NotFoundError, InvalidInputError
from ...models.db_models import (
    PillarDB, IndicatorDB, InspectionConfigDB, RiskLevel, PhotoCategory, utcnow,
)
from ...models.domain import Pillar, Indicator, ThresholdConfig
from ...settings import PERSISTENCE_READ_RETRIES
from .config_decoder import ConfigEntry, CONFIG_TYPES, decode_config
from . import seed_data

logger = logging.getLogger(__name__)

T = TypeVar("T")


PHOTO_CATEGORY_LABELS = {
    PhotoCategory.KITCHEN: "Kitchen",
    PhotoCategory.STORAGE: "Storage Area",
    PhotoCategory.COOKING_AREA: "Cooking Area",
    PhotoCategory.SERVING_AREA: "Serving Area",
    PhotoCategory.WATER_SOURCE: "Water Source",
    PhotoCategory.WASTE_DISPOSAL: "Waste Disposal",
}


def pillar_to_domain(row: PillarDB) -> Pillar:
    return Pillar(
        id=row.id,
        name=row.name,
        pillar_number=row.pillar_number,
        description=row.description,
        display_order=row.display_order or 0,
    )


def indicator_to_domain(row: IndicatorDB) -> Indicator:
    return Indicator(
        id=row.id,
        pillar_id=row.pillar_id,
        name=row.name,
        weight=float(row.weight),
        risk_level=RiskLevel(row.risk_level),
        indicator_number=row.indicator_number,
        description=row.description,
        display_order=row.display_order or 0,
    )


class CatalogService:
    """Pillars, indicators and threshold config backed by SQLAlchemy."""

    def __init__(self, db: Session, read_retries: int = PERSISTENCE_READ_RETRIES):
        self.db = db
        self.read_retries = read_retries

    def _read(self, description: str, query: Callable[[], T]) -> T:
        return read_with_retry(self.db, description, query, self.read_retries)

    def _transaction(self, description: str) -> ContextManager[Session]:
        return write_transaction(self.db, description)

    # =========================================================================
    # READS
    # =========================================================================

    def get_all_pillars(self) -> List[Pillar]:
        def query():
            rows = self.db.query(PillarDB).filter(
                PillarDB.is_active.is_(True)
            ).order_by(PillarDB.display_order, PillarDB.pillar_number).all()
            return [pillar_to_domain(r) for r in rows]
        return self._read("load pillars", query)

    def get_all_indicators(self) -> List[Indicator]:
        """Active indicators only. This list is the catalog the completeness gate counts."""
        def query():
            rows = self.db.query(IndicatorDB).filter(
                IndicatorDB.is_active.is_(True)
            ).order_by(IndicatorDB.display_order, IndicatorDB.indicator_number).all()
            return [indicator_to_domain(r) for r in rows]
        return self._read("load indicators", query)

    def get_all_config(self) -> List[ConfigEntry]:
        def query():
            rows = self.db.query(InspectionConfigDB).order_by(InspectionConfigDB.config_key).all()
            return [ConfigEntry(key=r.config_key, value=r.config_value, type=r.config_type) for r in rows]
        return self._read("load inspection config", query)

    def _config_row(self, key: str) -> Optional[InspectionConfigDB]:
        return self._read(
            f"load config '{key}'",
            lambda: self.db.query(InspectionConfigDB).filter(
                InspectionConfigDB.config_key == key
            ).first(),
        )

    def get_decoded_config(self) -> Dict[str, Any]:
        return decode_config(self.get_all_config())

    def get_thresholds(self) -> ThresholdConfig:
        """Live thresholds. Only previews use these; persisted inspections use their snapshot."""
        return ThresholdConfig.from_mapping(self.get_decoded_config())

    def get_form_config(self) -> Dict[str, Any]:
        """
        Everything a client needs to render the inspection form.

        Returns:
            Dict with pillars (each carrying its active indicators in display
            order), the decoded config map and the photo categories.
        """
        indicators = self.get_all_indicators()
        by_pillar: Dict[str, List[Indicator]] = {}
        for indicator in indicators:
            by_pillar.setdefault(indicator.pillar_id, []).append(indicator)

        pillars = []
        for pillar in self.get_all_pillars():
            pillars.append({
                "id": pillar.id,
                "pillar_number": pillar.pillar_number,
                "name": pillar.name,
                "description": pillar.description,
                "indicators": [
                    {
                        "id": ind.id,
                        "indicator_number": ind.indicator_number,
                        "name": ind.name,
                        "description": ind.description,
                        "risk_level": ind.risk_level.value,
                        "weight": ind.weight,
                    }
                    for ind in by_pillar.get(pillar.id, [])
                ],
            })

        return {
            "pillars": pillars,
            "config": self.get_decoded_config(),
            "photo_categories": [
                {"id": category.value, "name": label, "required": True}
                for category, label in PHOTO_CATEGORY_LABELS.items()
            ],
        }

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    def update_config(self, key: str, value: str, updated_by: Optional[str] = None) -> ConfigEntry:
        """
        Change a live config value. Bumps the row version.

        Existing inspections are unaffected; they score against their snapshot.

        Raises:
            NotFoundError: unknown config key
        """
        row = self._config_row(key)
        if not row:
            raise NotFoundError(f"Config key not found: {key}", details={"key": key})

        with self._transaction(f"update config '{key}'"):
            row.config_value = str(value)
            row.version = (row.version or 1) + 1
            row.updated_by = updated_by
            row.updated_at = utcnow()
            entry = ConfigEntry(key=row.config_key, value=row.config_value, type=row.config_type)
            version = row.version

        logger.info(f"Config '{key}' updated to {value!r} (v{version}) by {updated_by}")
        return entry

    def set_config(self, key: str, value: str, config_type: str = "string",
                   description: Optional[str] = None) -> ConfigEntry:
        """Insert a config row, or overwrite it if the key exists."""
        if config_type not in CONFIG_TYPES:
            raise InvalidInputError(f"Unsupported config type: {config_type}", details={"config_type": config_type})

        row = self._config_row(key)
        with self._transaction(f"set config '{key}'"):
            if row:
                row.config_value = str(value)
                row.config_type = config_type
                row.version = (row.version or 1) + 1
            else:
                row = InspectionConfigDB(
                    id=str(uuid4()),
                    config_key=key,
                    config_value=str(value),
                    config_type=config_type,
                    description=description,
                )
                self.db.add(row)
            entry = ConfigEntry(key=row.config_key, value=row.config_value, type=row.config_type)
        return entry

    def create_pillar(self, name: str, pillar_number: int,
                      description: Optional[str] = None,
                      display_order: Optional[int] = None) -> Pillar:
        row = PillarDB(
            id=str(uuid4()),
            pillar_number=pillar_number,
            name=name,
            description=description,
            display_order=pillar_number if display_order is None else display_order,
        )
        pillar = pillar_to_domain(row)
        with self._transaction(f"create pillar {pillar_number}"):
            self.db.add(row)
        logger.info(f"Pillar {pillar_number} '{name}' created")
        return pillar

    def create_indicator(self, pillar_id: str, name: str, indicator_number: int,
                         risk_level: RiskLevel, weight: float,
                         description: Optional[str] = None,
                         display_order: Optional[int] = None) -> Indicator:
        """
        Add an indicator to a pillar.

        Raises:
            NotFoundError: pillar does not exist
            InvalidInputError: weight is not positive
        """
        if weight <= 0:
            raise InvalidInputError("Indicator weight must be greater than zero", details={"weight": weight})
        pillar = self._read(
            "load pillar",
            lambda: self.db.query(PillarDB.id).filter(PillarDB.id == pillar_id).first(),
        )
        if not pillar:
            raise NotFoundError(f"Pillar not found: {pillar_id}", details={"pillar_id": pillar_id})

        row = IndicatorDB(
            id=str(uuid4()),
            pillar_id=pillar_id,
            indicator_number=indicator_number,
            name=name,
            description=description,
            risk_level=RiskLevel(risk_level),
            weight=float(weight),
            display_order=indicator_number if display_order is None else display_order,
        )
        indicator = indicator_to_domain(row)
        with self._transaction(f"create indicator {indicator_number}"):
            self.db.add(row)
        logger.info(f"Indicator {indicator_number} '{name}' created ({indicator.risk_level.value}, weight {weight})")
        return indicator

    # =========================================================================
    # SEEDING
    # =========================================================================

    def seed_catalog(self) -> Dict[str, int]:
        """
        Load the default pillars, indicators and config.

        Idempotent: pillars are matched by number, indicators by number,
        config by key. Existing rows are left untouched.

        Returns:
            Counts of rows inserted per table
        """
        inserted = {"pillars": 0, "indicators": 0, "config": 0}

        with self._transaction("seed catalog"):
            pillar_ids: Dict[int, str] = {
                p.pillar_number: p.id for p in self.db.query(PillarDB).all()
            }
            for data in seed_data.PILLARS:
                if data["pillar_number"] in pillar_ids:
                    continue
                row = PillarDB(
                    id=str(uuid4()),
                    pillar_number=data["pillar_number"],
                    name=data["name"],
                    description=data["description"],
                    display_order=data["pillar_number"],
                )
                self.db.add(row)
                pillar_ids[row.pillar_number] = row.id
                inserted["pillars"] += 1

            existing_indicators = {
                number for (number,) in self.db.query(IndicatorDB.indicator_number).all()
            }
            for pillar_number, number, name, risk_level, weight in seed_data.INDICATORS:
                if number in existing_indicators:
                    continue
                self.db.add(IndicatorDB(
                    id=str(uuid4()),
                    pillar_id=pillar_ids[pillar_number],
                    indicator_number=number,
                    name=name,
                    risk_level=RiskLevel(risk_level),
                    weight=float(weight),
                    display_order=number,
                ))
                inserted["indicators"] += 1

            existing_keys = {key for (key,) in self.db.query(InspectionConfigDB.config_key).all()}
            for key, value, config_type, description in seed_data.CONFIG:
                if key in existing_keys:
                    continue
                self.db.add(InspectionConfigDB(
                    id=str(uuid4()),
                    config_key=key,
                    config_value=value,
                    config_type=config_type,
                    description=description,
                ))
                inserted["config"] += 1

        logger.info(
            f"Catalog seeded: {inserted['pillars']} pillars, "
            f"{inserted['indicators']} indicators, {inserted['config']} config rows"
        )
        return inserted
