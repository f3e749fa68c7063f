"""
Inspection Lifecycle

Orchestrator, lifecycle guard, repository and code generation for the
draft -> submitted inspection aggregate.
"""
from .lifecycle import InspectionLifecycle
from .code_generator import InspectionCodeGenerator, format_code, code_prefix, district_tag
from .repository import InspectionRepository, DuplicateKeyError
from .inspection_service import InspectionService

__all__ = [
    "InspectionLifecycle",
    "InspectionCodeGenerator",
    "format_code",
    "code_prefix",
    "district_tag",
    "InspectionRepository",
    "DuplicateKeyError",
    "InspectionService",
]
