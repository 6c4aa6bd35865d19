"""Milestone template resolution for imported components.

Assigns exactly one template per component using an ordered rule table:
1. Exact type lookup (case-insensitive)
2. Regex patterns tested against the type tag and the component id
3. Default template, with an operational warning
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from fieldtrack.config import get_config
from fieldtrack.milestones.templates import ConfigurationError, read_yaml
from fieldtrack.models import CanonicalComponentRecord, MilestoneTemplate

logger = logging.getLogger(__name__)


class TemplatesUnavailableError(RuntimeError):
    """The project has no milestone templates loaded."""

    pass


@dataclass(frozen=True)
class TemplateRules:
    """Parsed template_rules.yaml."""

    exact_types: dict[str, str]
    patterns: tuple[tuple[re.Pattern, str], ...]
    default_template: str

    @classmethod
    def from_yaml(cls, config_path: Path) -> TemplateRules:
        content = read_yaml(config_path)

        exact = {str(k).strip().upper(): str(v) for k, v in (content.get("exact_types") or {}).items()}

        patterns = []
        for rule in content.get("patterns") or []:
            try:
                patterns.append((re.compile(rule["pattern"], re.IGNORECASE), rule["template"]))
            except (KeyError, TypeError, re.error) as e:
                raise ConfigurationError(f"Invalid pattern rule {rule!r} in {config_path}: {e}")

        default = content.get("default_template")
        if not default:
            raise ConfigurationError(f"No default_template defined in {config_path}")

        return cls(exact_types=exact, patterns=tuple(patterns), default_template=default)

    def match(self, component_type: str | None, component_id: str | None) -> tuple[str, str]:
        """Return (template name, how it matched: exact|pattern|default)."""
        normalized_type = (component_type or "").strip().upper()
        template_name = self.exact_types.get(normalized_type)
        if template_name:
            return template_name, "exact"

        for pattern, template_name in self.patterns:
            if pattern.search(component_type or "") or pattern.search(component_id or ""):
                return template_name, "pattern"

        return self.default_template, "default"


# Singleton instance
_rules: Optional[TemplateRules] = None


def get_template_rules() -> TemplateRules:
    """Get or create the singleton rule table from the packaged YAML."""
    global _rules
    if _rules is None:
        _rules = TemplateRules.from_yaml(get_config().template_rules_path)
    return _rules


def resolve_template_name(
    component_type: str | None,
    component_id: str | None,
    rules: TemplateRules | None = None,
) -> str:
    """Template name for a type/id pair, ignoring which templates exist."""
    rules = rules or get_template_rules()
    return rules.match(component_type, component_id)[0]


class TemplateResolver:
    """Resolve components to a project's loaded milestone templates."""

    def __init__(
        self,
        templates: dict[str, MilestoneTemplate],
        rules: TemplateRules | None = None,
    ):
        """Initialize resolver against a project's template map.

        Args:
            templates: Project templates keyed by name
            rules: Rule table (defaults to the packaged template_rules.yaml)

        Raises:
            TemplatesUnavailableError: If no templates are loaded
        """
        if not templates:
            raise TemplatesUnavailableError("No milestone templates available for project")

        self.templates = templates
        self.rules = rules or get_template_rules()
        self.unmatched: list[tuple[str | None, str | None]] = []

    def resolve(self, component_type: str | None, component_id: str | None) -> MilestoneTemplate:
        template_name, how = self.rules.match(component_type, component_id)

        if how == "default":
            self.unmatched.append((component_type, component_id))
            logger.warning(
                f'No template mapping found for type "{component_type}" and ID '
                f'"{component_id}", using default: {template_name}'
            )

        template = self.templates.get(template_name)
        if template is None:
            # Project is missing a standard template; keep going with whatever exists
            template = next(iter(self.templates.values()))
            logger.error(f'Template "{template_name}" not found, falling back to: {template.name}')

        return template

    def annotate(self, record: CanonicalComponentRecord) -> CanonicalComponentRecord:
        """Return a copy of the record carrying its template name and id."""
        template = self.resolve(record.type, record.component_id)
        return record.model_copy(update={"template_name": template.name, "template_id": template.id})

    def annotate_all(self, records: Iterable[CanonicalComponentRecord]) -> list[CanonicalComponentRecord]:
        annotated = [self.annotate(record) for record in records]
        if self.unmatched:
            logger.warning(f"{len(self.unmatched)} components fell back to the default template")
        return annotated


@dataclass
class TypeStats:
    """Per-type summary used to preview template assignment."""

    count: int = 0
    template: str = ""
    examples: list[str] = field(default_factory=list)


def analyze_component_types(
    records: Iterable[CanonicalComponentRecord],
    rules: TemplateRules | None = None,
) -> dict[str, TypeStats]:
    """Group components by type tag with their resolved template and examples."""
    rules = rules or get_template_rules()
    stats: dict[str, TypeStats] = {}

    for record in records:
        type_tag = record.type or "UNKNOWN"
        entry = stats.get(type_tag)
        if entry is None:
            entry = stats[type_tag] = TypeStats(
                template=resolve_template_name(record.type, record.component_id, rules)
            )
        entry.count += 1
        if len(entry.examples) < 3 and record.component_id:
            entry.examples.append(record.component_id)

    return stats
