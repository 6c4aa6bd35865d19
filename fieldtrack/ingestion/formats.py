"""Component file ingestion for FieldTrack.

Reads spreadsheet workbooks (XLSX/XLS), delimited text (CSV) and structured
JSON documents into raw row sets. No column interpretation happens here; that
is the normalizer's job.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = (".xlsx", ".xlsm", ".xls")
CSV_EXTENSIONS = (".csv",)
JSON_EXTENSIONS = (".json",)

COMPONENT_SHEETS = ("Components", "Component")
DRAWING_SHEETS = ("Drawings", "Drawing")
MILESTONE_SHEETS = ("Milestones", "Milestone")


class FormatError(ValueError):
    """File cannot be read as a supported import format."""

    pass


@dataclass
class RawRow:
    """One source row with its 1-based position in the file."""

    row_number: int
    values: dict[str, Any]


@dataclass
class RawImportData:
    """Everything read from one import file, before normalization."""

    source_format: str
    source_name: str
    components: list[RawRow] = field(default_factory=list)
    drawings: list[RawRow] = field(default_factory=list)
    milestones: list[RawRow] = field(default_factory=list)
    project: dict[str, Any] | None = None

    @property
    def row_count(self) -> int:
        return len(self.components)


def detect_format(filename: str | Path) -> str:
    """Map a file name to one of "excel", "csv" or "json".

    Raises:
        FormatError: If the extension is not supported
    """
    suffix = Path(filename).suffix.lower()
    if suffix in EXCEL_EXTENSIONS:
        return "excel"
    if suffix in CSV_EXTENSIONS:
        return "csv"
    if suffix in JSON_EXTENSIONS:
        return "json"
    raise FormatError(
        f"Unsupported file format: {suffix or '(none)'}. "
        "Supported formats: .xlsx, .xls, .csv, .json"
    )


def ingest_file(
    file_path: Path,
    max_file_size_mb: int | None = None,
    max_rows: int | None = None,
) -> RawImportData:
    """Read an import file from disk.

    Args:
        file_path: Path to XLSX/XLS, CSV or JSON file
        max_file_size_mb: Reject files larger than this
        max_rows: Reject files with more component rows than this

    Returns:
        RawImportData with component rows and any auxiliary sheets

    Raises:
        FileNotFoundError: If file doesn't exist
        FormatError: If the file cannot be fully read
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Import file not found: {file_path}")

    fmt = detect_format(file_path)

    if max_file_size_mb is not None:
        file_size_mb = file_path.stat().st_size / (1024 * 1024)
        if file_size_mb > max_file_size_mb:
            raise FormatError(
                f"File too large ({file_size_mb:.1f}MB). Maximum allowed: {max_file_size_mb}MB"
            )

    return ingest_bytes(
        file_path.read_bytes(),
        fmt=fmt,
        source_name=file_path.name,
        max_rows=max_rows,
    )


def ingest_bytes(
    content: bytes,
    fmt: str | None = None,
    source_name: str = "upload",
    max_rows: int | None = None,
) -> RawImportData:
    """Read an import file already held in memory.

    Args:
        content: File bytes
        fmt: "excel", "csv" or "json"; detected from source_name when omitted
        source_name: Original file name (for logging and detection)
        max_rows: Reject files with more component rows than this

    Raises:
        FormatError: If the format is unknown or the content is unreadable
    """
    fmt = fmt or detect_format(source_name)

    if not content:
        raise FormatError(f"File is empty: {source_name}")

    logger.info(f"Parsing {fmt} file: {source_name}")

    if fmt == "excel":
        data = _parse_excel(content, source_name)
    elif fmt == "csv":
        data = _parse_csv(content, source_name)
    elif fmt == "json":
        data = _parse_json(content, source_name)
    else:
        raise FormatError(f"Unsupported format: {fmt}")

    if max_rows is not None and data.row_count > max_rows:
        raise FormatError(f"Too many rows ({data.row_count:,}). Maximum allowed: {max_rows:,}")

    logger.info(
        f"Parsed {data.row_count} components, {len(data.drawings)} drawings, "
        f"{len(data.milestones)} milestone rows from {source_name}"
    )
    return data


def _parse_excel(content: bytes, source_name: str) -> RawImportData:
    try:
        sheets = pd.read_excel(io.BytesIO(content), sheet_name=None, dtype=object)
    except (ValueError, OSError, KeyError, ImportError, zipfile.BadZipFile, InvalidFileException) as e:
        raise FormatError(f"Could not read workbook {source_name}: {e}") from e

    if not sheets:
        raise FormatError(f"Workbook {source_name} has no sheets")

    data = RawImportData(source_format="excel", source_name=source_name)

    # Prefer a components sheet, fall back to the first sheet
    component_sheet = _pick_sheet(sheets, COMPONENT_SHEETS)
    if component_sheet is None:
        component_sheet = next(iter(sheets))
    data.components = _frame_to_rows(sheets[component_sheet])

    drawing_sheet = _pick_sheet(sheets, DRAWING_SHEETS)
    if drawing_sheet is not None and drawing_sheet != component_sheet:
        data.drawings = _frame_to_rows(sheets[drawing_sheet])

    milestone_sheet = _pick_sheet(sheets, MILESTONE_SHEETS)
    if milestone_sheet is not None and milestone_sheet != component_sheet:
        data.milestones = _frame_to_rows(sheets[milestone_sheet])

    return data


def _parse_csv(content: bytes, source_name: str) -> RawImportData:
    try:
        df = pd.read_csv(
            io.BytesIO(content),
            dtype=str,
            skipinitialspace=True,
            skip_blank_lines=True,
            encoding="utf-8-sig",
        )
    except (ValueError, UnicodeDecodeError, pd.errors.ParserError) as e:
        raise FormatError(f"Could not read CSV {source_name}: {e}") from e

    df = df.apply(lambda col: col.str.strip())
    df = df.mask(df == "")

    return RawImportData(
        source_format="csv",
        source_name=source_name,
        components=_frame_to_rows(df),
    )


def _parse_json(content: bytes, source_name: str) -> RawImportData:
    try:
        document = json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError(f"Invalid JSON in {source_name}: {e}") from e

    data = RawImportData(source_format="json", source_name=source_name)

    if isinstance(document, dict) and isinstance(document.get("components"), list):
        components = document["components"]
        drawings = document.get("drawings") or []
        project = document.get("project")
        if not isinstance(drawings, list):
            raise FormatError(f"'drawings' must be a list in {source_name}")
        if project is not None and not isinstance(project, dict):
            raise FormatError(f"'project' must be an object in {source_name}")
        data.drawings = _objects_to_rows(drawings, source_name)
        data.project = project
    elif isinstance(document, list):
        components = document
    else:
        raise FormatError(
            "Invalid JSON format. Expected either {components: [...]} or an array of components"
        )

    data.components = _objects_to_rows(components, source_name)
    return data


def _pick_sheet(sheets: dict[str, pd.DataFrame], candidates: tuple[str, ...]) -> str | None:
    for name in candidates:
        if name in sheets:
            return name
    return None


def _frame_to_rows(df: pd.DataFrame) -> list[RawRow]:
    """Convert a DataFrame into RawRows, dropping blank rows and NaN cells."""
    df = df.rename(columns=lambda c: str(c).strip())
    df = df.dropna(how="all")
    df = df.astype(object).where(pd.notna(df), None)

    rows = []
    for idx, values in zip(df.index, df.to_dict(orient="records")):
        # +2: pandas index is 0-based and the header occupies row 1
        rows.append(RawRow(row_number=int(idx) + 2, values=values))
    return rows


def _objects_to_rows(objects: list[Any], source_name: str) -> list[RawRow]:
    rows = []
    for i, obj in enumerate(objects):
        if not isinstance(obj, dict):
            raise FormatError(f"Entry {i + 1} in {source_name} is not an object")
        rows.append(RawRow(row_number=i + 1, values=obj))
    return rows
