"""Unit tests for milestone template resolution."""

from __future__ import annotations

import logging

import pytest

from fieldtrack.milestones.resolver import (
    TemplateResolver,
    TemplateRules,
    TemplatesUnavailableError,
    analyze_component_types,
    get_template_rules,
    resolve_template_name,
)
from fieldtrack.milestones.templates import ConfigurationError, load_standard_templates
from fieldtrack.models import CanonicalComponentRecord

FULL = "Full Milestone Set"
REDUCED = "Reduced Milestone Set"


@pytest.fixture
def template_map():
    return {
        t.name: t.model_copy(update={"id": f"tpl-{i}"})
        for i, t in enumerate(load_standard_templates())
    }


class TestResolveTemplateName:
    @pytest.mark.parametrize(
        "component_type, component_id, expected",
        [
            ("GASKET", "GK-001", REDUCED),
            ("UNKNOWN", "GKT-123", REDUCED),
            ("FIELD_WELD", "FW-1", "Field Weld"),
            ("SPOOL", "SP-100", FULL),
            ("INSULATION", "INS-4", "Insulation"),
            ("COATING", "C-1", "Paint"),
            ("gasket", "x", REDUCED),
        ],
    )
    def test_examples(self, component_type, component_id, expected):
        assert resolve_template_name(component_type, component_id) == expected

    def test_exact_match_beats_patterns(self):
        # "FW-1" would hit the field-weld pattern, but the exact type wins
        assert resolve_template_name("VALVE", "FW-1") == REDUCED

    def test_pattern_tested_against_type_and_id(self):
        assert resolve_template_name("Valve Body", "X-1") == REDUCED
        assert resolve_template_name(None, "VLV-22") == REDUCED
        assert resolve_template_name("", "L-2001") == FULL

    def test_patterns_are_ordered(self):
        # "SPPT" (support) is listed before "^SP" (spool)
        assert resolve_template_name("UNKNOWN", "SPPT-7") == REDUCED

    def test_unmatched_defaults_to_full(self):
        assert resolve_template_name("WIDGET", "ZZ-9") == FULL

    def test_every_exact_type_resolves_to_its_table_entry(self):
        rules = get_template_rules()
        for type_tag, template in rules.exact_types.items():
            assert rules.match(type_tag, "FW-1") == (template, "exact")


class TestTemplateRulesFile:
    def test_invalid_pattern(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "default_template: Full Milestone Set\n"
            "patterns:\n"
            "  - {pattern: '(unclosed', template: Paint}\n"
        )
        with pytest.raises(ConfigurationError, match="Invalid pattern"):
            TemplateRules.from_yaml(path)

    def test_default_required(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("exact_types: {PIPE: Full Milestone Set}\n")
        with pytest.raises(ConfigurationError, match="default_template"):
            TemplateRules.from_yaml(path)


class TestTemplateResolver:
    def test_requires_templates(self):
        with pytest.raises(TemplatesUnavailableError):
            TemplateResolver({})

    def test_annotate_sets_template_id(self, template_map):
        resolver = TemplateResolver(template_map)
        record = CanonicalComponentRecord(component_id="GK-001", type="GASKET")

        annotated = resolver.annotate(record)

        assert annotated.template_name == REDUCED
        assert annotated.template_id == template_map[REDUCED].id
        assert record.template_id is None

    def test_unmatched_is_logged_not_raised(self, template_map, caplog):
        resolver = TemplateResolver(template_map)

        with caplog.at_level(logging.WARNING, logger="fieldtrack.milestones.resolver"):
            template = resolver.resolve("WIDGET", "ZZ-9")

        assert template.name == FULL
        assert resolver.unmatched == [("WIDGET", "ZZ-9")]
        assert any("ZZ-9" in message for message in caplog.messages)

    def test_missing_template_falls_back(self, template_map):
        resolver = TemplateResolver({"Paint": template_map["Paint"]})
        assert resolver.resolve("GASKET", "GK-1").name == "Paint"

    def test_annotate_all(self, template_map):
        resolver = TemplateResolver(template_map)
        records = [
            CanonicalComponentRecord(component_id="FW-1", type="FIELD_WELD"),
            CanonicalComponentRecord(component_id="?", type="MYSTERY"),
        ]

        annotated = resolver.annotate_all(records)

        assert [r.template_name for r in annotated] == ["Field Weld", FULL]
        assert len(resolver.unmatched) == 1


def test_analyze_component_types():
    records = [
        CanonicalComponentRecord(component_id=f"GK-{i}", type="GASKET") for i in range(5)
    ] + [CanonicalComponentRecord(component_id="X-1", type=None)]

    stats = analyze_component_types(records)

    assert stats["GASKET"].count == 5
    assert stats["GASKET"].template == REDUCED
    assert stats["GASKET"].examples == ["GK-0", "GK-1", "GK-2"]
    assert stats["UNKNOWN"].template == FULL
