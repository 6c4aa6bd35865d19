"""Unit tests for the standard milestone template catalogue."""

from __future__ import annotations

import pytest

from fieldtrack.milestones.templates import (
    ConfigurationError,
    default_template_name,
    load_standard_templates,
    validate_template,
)
from fieldtrack.models import MilestoneDefinition, MilestoneTemplate

STANDARD_NAMES = {
    "Full Milestone Set",
    "Reduced Milestone Set",
    "Field Weld",
    "Insulation",
    "Paint",
}


def test_standard_catalogue_names():
    templates = load_standard_templates()
    assert {t.name for t in templates} == STANDARD_NAMES


def test_every_template_weights_sum_to_100():
    for template in load_standard_templates():
        assert template.total_weight == pytest.approx(100, abs=0.01), template.name


def test_milestone_orders_unique():
    for template in load_standard_templates():
        orders = [m.order for m in template.milestones]
        assert len(orders) == len(set(orders)), template.name


def test_default_template():
    assert default_template_name() == "Full Milestone Set"


def test_full_set_contents():
    full = next(t for t in load_standard_templates() if t.name == "Full Milestone Set")
    assert [(m.name, m.weight) for m in full.milestones] == [
        ("Receive", 5),
        ("Erect", 30),
        ("Connect", 30),
        ("Support", 15),
        ("Punch", 5),
        ("Test", 10),
        ("Restore", 5),
    ]


class TestValidateTemplate:
    def test_rejects_bad_weight_sum(self):
        template = MilestoneTemplate(
            name="Broken",
            milestones=[
                MilestoneDefinition(name="A", weight=50, order=1),
                MilestoneDefinition(name="B", weight=40, order=2),
            ],
        )
        with pytest.raises(ConfigurationError, match="90"):
            validate_template(template)

    def test_accepts_rounding_tolerance(self):
        template = MilestoneTemplate(
            name="Thirds",
            milestones=[
                MilestoneDefinition(name="A", weight=33.333, order=1),
                MilestoneDefinition(name="B", weight=33.333, order=2),
                MilestoneDefinition(name="C", weight=33.334, order=3),
            ],
        )
        validate_template(template)

    def test_rejects_duplicate_orders(self):
        template = MilestoneTemplate(
            name="Dupes",
            milestones=[
                MilestoneDefinition(name="A", weight=50, order=1),
                MilestoneDefinition(name="B", weight=50, order=1),
            ],
        )
        with pytest.raises(ConfigurationError, match="duplicate"):
            validate_template(template)


class TestLoadFromFile:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_standard_templates(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("templates: [unclosed")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_standard_templates(path)

    def test_invalid_weights_in_file(self, tmp_path):
        path = tmp_path / "templates.yaml"
        path.write_text(
            "templates:\n"
            "  - name: Lopsided\n"
            "    milestones:\n"
            "      - {name: Only, weight: 80, order: 1}\n"
        )
        with pytest.raises(ConfigurationError, match="Lopsided"):
            load_standard_templates(path)
