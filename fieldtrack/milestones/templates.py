"""Standard milestone template catalogue.

Templates are defined in config/milestone_templates.yaml, validated on load,
and copied into each project once. The import path only ever reads them.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fieldtrack.config import get_config
from fieldtrack.db.models import MilestoneTemplateModel
from fieldtrack.models import MilestoneDefinition, MilestoneTemplate

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 0.01


class ConfigurationError(Exception):
    """Configuration file is invalid or missing."""

    pass


def read_yaml(path: Path) -> dict:
    """Load a YAML rule file, raising ConfigurationError on any problem."""
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with path.open(encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}")

    if not isinstance(content, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")
    return content


def validate_template(template: MilestoneTemplate) -> None:
    """Check weights sum to 100 and milestone orders are unique.

    Raises:
        ConfigurationError: If the template breaks either rule
    """
    total = template.total_weight
    if abs(total - 100) > WEIGHT_TOLERANCE:
        raise ConfigurationError(
            f'Template "{template.name}" weights sum to {total}%, not 100%'
        )

    orders = [m.order for m in template.milestones]
    if len(set(orders)) != len(orders):
        raise ConfigurationError(f'Template "{template.name}" has duplicate milestone orders')


def load_standard_templates(config_path: Path | None = None) -> list[MilestoneTemplate]:
    """Load and validate the standard template definitions.

    Args:
        config_path: Path to milestone_templates.yaml (defaults to the packaged file)

    Returns:
        Templates in file order

    Raises:
        ConfigurationError: If the file is missing, malformed or a template is invalid
    """
    if config_path is None:
        config_path = get_config().templates_config_path

    content = read_yaml(config_path)
    raw_templates = content.get("templates") or []
    if not raw_templates:
        raise ConfigurationError(f"No templates defined in {config_path}")

    templates = []
    for raw in raw_templates:
        try:
            template = MilestoneTemplate(**raw)
        except (TypeError, PydanticValidationError) as e:
            raise ConfigurationError(f"Invalid template definition in {config_path}: {e}")
        validate_template(template)
        templates.append(template)

    return templates


def default_template_name(config_path: Path | None = None) -> str:
    """Name of the template flagged as the project default."""
    if config_path is None:
        config_path = get_config().templates_config_path
    return read_yaml(config_path).get("default_template", "Full Milestone Set")


def template_from_model(model: MilestoneTemplateModel) -> MilestoneTemplate:
    """Convert a stored template row, tolerating legacy JSON-string milestone lists."""
    raw = model.milestones
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse milestones for template {model.name}")
            raw = []

    return MilestoneTemplate(
        id=model.id,
        name=model.name,
        description=model.description or "",
        milestones=[MilestoneDefinition(**m) for m in raw or []],
    )


async def load_template_map(session: AsyncSession, project_id: str) -> dict[str, MilestoneTemplate]:
    """Load every template of a project keyed by name."""
    result = await session.execute(
        select(MilestoneTemplateModel).where(MilestoneTemplateModel.project_id == project_id)
    )
    templates = {model.name: template_from_model(model) for model in result.scalars()}
    logger.info(f"Loaded {len(templates)} milestone templates for project {project_id}")
    return templates


async def ensure_project_templates(
    session: AsyncSession,
    project_id: str,
    templates: list[MilestoneTemplate] | None = None,
) -> dict[str, MilestoneTemplate]:
    """Create any missing standard templates for a project.

    Existing templates (matched by name) are left untouched.

    Returns:
        All templates of the project keyed by name
    """
    if templates is None:
        templates = load_standard_templates()
    default_name = default_template_name()

    existing = await load_template_map(session, project_id)

    for template in templates:
        validate_template(template)
        if template.name in existing:
            logger.debug(f'Template "{template.name}" already exists, skipping')
            continue

        model = MilestoneTemplateModel(
            project_id=project_id,
            name=template.name,
            description=template.description,
            milestones=[m.model_dump() for m in template.milestones],
            is_default=template.name == default_name,
        )
        session.add(model)
        await session.flush()

        existing[template.name] = template.model_copy(update={"id": model.id})
        logger.info(
            f"Created template: {template.name} "
            f"({len(template.milestones)} milestones, {template.total_weight:g}% total weight)"
        )

    return existing
