"""Column aliasing and value normalization for imported component data.

Upstream planning tools name the same column many ways ("Component ID",
"ComponentID", "Tag", ...) and encode booleans and dates inconsistently.
Every canonical field has a priority-ordered alias list; the first alias
carrying a non-blank value wins.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import pandas as pd

from fieldtrack.ingestion.formats import RawImportData, RawRow
from fieldtrack.models import (
    CanonicalComponentRecord,
    DrawingRecord,
    MilestoneEntry,
    ProjectRecord,
    WorkflowKind,
)

logger = logging.getLogger(__name__)


# Canonical component field -> accepted source columns, highest priority first
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "component_id": ("Component ID", "ComponentID", "ID", "Tag", "componentId", "component_id"),
    "type": ("Type", "Component Type", "type", "componentType"),
    "spec": ("Spec", "Specification", "spec", "specification"),
    "size": ("Size", "Diameter", "size"),
    "material": ("Material", "Mat", "material"),
    "area": ("Area", "Zone", "area"),
    "system": ("System", "Service", "system"),
    "test_package": ("Test Package", "TP", "Package", "testPackage", "test_package"),
    "drawing_number": ("Drawing", "Drawing Number", "DWG", "drawingNumber", "drawing_number"),
    "workflow_type": ("Workflow Type", "Workflow", "workflowType", "workflow_type"),
}

# Rows of a "Milestones" sheet and milestone objects nested in JSON components
MILESTONE_ALIASES: dict[str, tuple[str, ...]] = {
    "component_id": ("Component ID", "ComponentID", "componentId"),
    "name": ("Milestone", "Name", "name", "milestoneName"),
    "completed": ("Completed", "Status", "completed", "isCompleted"),
    "completed_date": ("Completed Date", "Date", "completedDate", "completedAt"),
    "weight": ("Weight", "weight"),
    "percentage_value": ("Percentage", "Percent", "percentageValue"),
    "quantity_value": ("Quantity", "Qty", "quantityValue"),
    "quantity_required": ("Required", "Quantity Required", "quantityRequired"),
    "quantity_unit": ("Unit", "quantityUnit"),
}

DRAWING_ALIASES: dict[str, tuple[str, ...]] = {
    "number": ("Drawing Number", "Number", "DWG", "number", "drawingNumber"),
    "title": ("Title", "Description", "Name", "title", "description"),
    "revision": ("Revision", "Rev", "revision"),
}

PROJECT_ALIASES: dict[str, tuple[str, ...]] = {
    "job_name": ("jobName", "name", "Job Name"),
    "job_number": ("jobNumber", "Job Number"),
    "description": ("description", "Description"),
    "location": ("location", "Location"),
}

# Milestones recorded as top-level columns, each with an optional "<name> Date"
INLINE_MILESTONE_COLUMNS: tuple[str, ...] = (
    "Received",
    "Fit-up",
    "Fitted",
    "Welded",
    "Tested",
    "Insulated",
    "Delivered",
    "Installed",
    "Connected",
    "Commissioned",
)

TRUTHY_STRINGS = frozenset({"true", "yes", "y", "1", "x", "complete", "completed", "done"})

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_EXCEL_EPOCH = pd.Timestamp("1899-12-30")


@dataclass
class NormalizedImport:
    """Canonical view of one import file."""

    components: list[CanonicalComponentRecord] = field(default_factory=list)
    drawings: list[DrawingRecord] = field(default_factory=list)
    project: ProjectRecord | None = None


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return value is pd.NaT


def get_field(values: dict[str, Any], aliases: tuple[str, ...]) -> Any:
    """Return the first non-blank value among the given source columns."""
    for alias in aliases:
        if alias in values and not _is_blank(values[alias]):
            return values[alias]
    return None


def _text(value: Any) -> str | None:
    """Stringify a cell, rendering integral floats without the trailing .0."""
    if _is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def parse_boolean(value: Any) -> bool:
    """Collapse checkbox-ish spreadsheet values to a bool."""
    if _is_blank(value):
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_STRINGS
    return False


def parse_number(value: Any) -> float | None:
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def parse_date(value: Any) -> date | None:
    """Parse ISO strings, spreadsheet serial numbers or free-form dates.

    Unparseable input yields None; rejecting bad dates is not this layer's job.
    """
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _serial_to_date(value)

    text = str(value).strip()
    if _ISO_DATE.match(text):
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass

    serial = parse_number(text)
    if serial is not None:
        return _serial_to_date(serial)

    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def _serial_to_date(serial: float) -> date | None:
    try:
        return (_EXCEL_EPOCH + pd.to_timedelta(serial, unit="D")).date()
    except (OverflowError, ValueError):
        return None


def normalize_workflow_kind(value: Any) -> str:
    """Map free-text workflow labels onto a WorkflowKind value.

    Blank input defaults to DISCRETE. Non-blank text matching no known kind is
    returned unchanged so validation can report it.
    """
    text = _text(value)
    if not text:
        return WorkflowKind.DISCRETE.value

    normalized = re.sub(r"\s+", "_", text.upper())
    if "DISCRETE" in normalized or "CHECKBOX" in normalized:
        return WorkflowKind.DISCRETE.value
    if "PERCENT" in normalized:
        return WorkflowKind.PERCENTAGE.value
    if "QUANTITY" in normalized or "QTY" in normalized:
        return WorkflowKind.QUANTITY.value

    return text


def normalize_milestone(values: dict[str, Any]) -> MilestoneEntry:
    """Build a MilestoneEntry from a milestone-sheet row or JSON object."""
    return MilestoneEntry(
        name=_text(get_field(values, MILESTONE_ALIASES["name"])) or "",
        completed=parse_boolean(get_field(values, MILESTONE_ALIASES["completed"])),
        completed_date=parse_date(get_field(values, MILESTONE_ALIASES["completed_date"])),
        weight=parse_number(get_field(values, MILESTONE_ALIASES["weight"])),
        percentage_value=parse_number(get_field(values, MILESTONE_ALIASES["percentage_value"])),
        quantity_value=parse_number(get_field(values, MILESTONE_ALIASES["quantity_value"])),
        quantity_required=parse_number(get_field(values, MILESTONE_ALIASES["quantity_required"])),
        quantity_unit=_text(get_field(values, MILESTONE_ALIASES["quantity_unit"])),
    )


def _inline_milestones(values: dict[str, Any]) -> list[MilestoneEntry]:
    milestones = []
    for name in INLINE_MILESTONE_COLUMNS:
        if name not in values:
            continue
        milestones.append(
            MilestoneEntry(
                name=name,
                completed=parse_boolean(values[name]),
                completed_date=parse_date(values.get(f"{name} Date")),
            )
        )
    return milestones


def normalize_component_row(row: RawRow) -> CanonicalComponentRecord:
    """Map one raw component row onto the canonical schema."""
    values = row.values

    canonical = {
        name: _text(get_field(values, aliases))
        for name, aliases in FIELD_ALIASES.items()
        if name != "workflow_type"
    }

    nested = values.get("milestones")
    if isinstance(nested, list):
        milestones = [normalize_milestone(m) for m in nested if isinstance(m, dict)]
    else:
        milestones = _inline_milestones(values)

    return CanonicalComponentRecord(
        **canonical,
        workflow_type=normalize_workflow_kind(get_field(values, FIELD_ALIASES["workflow_type"])),
        milestones=milestones,
        row_number=row.row_number,
    )


def normalize_drawing_row(row: RawRow) -> DrawingRecord | None:
    number = _text(get_field(row.values, DRAWING_ALIASES["number"]))
    if not number:
        return None
    return DrawingRecord(
        number=number,
        title=_text(get_field(row.values, DRAWING_ALIASES["title"])),
        revision=_text(get_field(row.values, DRAWING_ALIASES["revision"])),
    )


def normalize_project(values: dict[str, Any]) -> ProjectRecord:
    return ProjectRecord(
        **{name: _text(get_field(values, aliases)) for name, aliases in PROJECT_ALIASES.items()}
    )


def merge_milestone_rows(
    components: list[CanonicalComponentRecord], milestone_rows: list[RawRow]
) -> list[CanonicalComponentRecord]:
    """Fold a separate milestones sheet into components by identifier.

    A component matched by the sheet has its milestone list replaced; rows
    naming unknown components are ignored.
    """
    by_component: dict[str, list[MilestoneEntry]] = {}
    for row in milestone_rows:
        component_id = _text(get_field(row.values, MILESTONE_ALIASES["component_id"]))
        if not component_id:
            continue
        by_component.setdefault(component_id, []).append(normalize_milestone(row.values))

    merged = []
    for component in components:
        milestones = by_component.get(component.component_id or "")
        if milestones is not None:
            component = component.model_copy(update={"milestones": milestones})
        merged.append(component)

    unmatched = set(by_component) - {c.component_id for c in components}
    if unmatched:
        logger.warning(
            f"Milestone rows reference {len(unmatched)} unknown components, ignored"
        )
    return merged


def normalize_import_data(raw: RawImportData) -> NormalizedImport:
    """Normalize every sheet/section of a raw import."""
    components = [normalize_component_row(row) for row in raw.components]
    if raw.milestones:
        components = merge_milestone_rows(components, raw.milestones)

    drawings = [d for d in (normalize_drawing_row(row) for row in raw.drawings) if d is not None]
    project = normalize_project(raw.project) if raw.project else None

    return NormalizedImport(components=components, drawings=drawings, project=project)
