"""
Indicator Catalog

Pillars, weighted indicators and threshold configuration, plus the typed
config decoder that snapshots thresholds onto each inspection.
"""
from .config_decoder import ConfigEntry, decode_value, decode_config, snapshot_config
from .catalog_service import CatalogService, PHOTO_CATEGORY_LABELS

__all__ = [
    "ConfigEntry",
    "decode_value",
    "decode_config",
    "snapshot_config",
    "CatalogService",
    "PHOTO_CATEGORY_LABELS",
]
