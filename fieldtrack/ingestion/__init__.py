"""Data ingestion module for FieldTrack.

Reads component files and normalizes them onto the canonical schema.
"""

from fieldtrack.ingestion.formats import FormatError, RawImportData, ingest_bytes, ingest_file
from fieldtrack.ingestion.normalizer import NormalizedImport, normalize_import_data

__all__ = [
    "FormatError",
    "RawImportData",
    "NormalizedImport",
    "ingest_file",
    "ingest_bytes",
    "normalize_import_data",
]
