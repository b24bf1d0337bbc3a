"""Importer schema models."""

from .schema import ImportProfile, ImportRunStatus, ImportSourceType, PartnerImportRun

__all__ = [
    "ImportProfile",
    "ImportRunStatus",
    "ImportSourceType",
    "PartnerImportRun",
]
