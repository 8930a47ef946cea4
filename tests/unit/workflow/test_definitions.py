"""Tests for workflow definitions and YAML loading."""

from decimal import Decimal

import pytest
import yaml

from approvalhub.core.exceptions import ValidationError
from approvalhub.core.workflow.definitions import LevelDef, WorkflowDefinition, load_definitions


class TestWorkflowDefinition:
    """Test the routing table of a definition."""

    def test_levels_are_sorted(self):
        definition = WorkflowDefinition(
            id=149,
            entity_type="Item Code",
            levels=(LevelDef(2, "102"), LevelDef(1, "101")),
        )
        assert [d.level for d in definition.levels] == [1, 2]

    def test_route_unpartitioned(self):
        definition = WorkflowDefinition(
            id=149, entity_type="Item Code", levels=(LevelDef(1, "101"), LevelDef(2, "102"))
        )
        assert definition.route(2).role == "102"
        assert definition.route(3) is None

    def test_route_ignores_partition_when_unpartitioned(self):
        """A stray partition value on an unpartitioned workflow still routes."""
        definition = WorkflowDefinition(id=1, entity_type="Doc", levels=(LevelDef(1, "101"),))
        assert definition.route(1, "PROJECT").role == "101"

    def test_route_partitioned(self):
        definition = WorkflowDefinition(
            id=200,
            entity_type="Cost Centre",
            partitioned=True,
            levels=(
                LevelDef(1, "201", "PROJECT"),
                LevelDef(1, "301", "OFFICE"),
                LevelDef(2, "202", "OFFICE"),
            ),
        )
        assert definition.route(1, "PROJECT").role == "201"
        assert definition.route(1, "OFFICE").role == "301"
        assert definition.route(2, "PROJECT") is None
        assert definition.route(1, None) is None
        assert definition.partitions == ["OFFICE", "PROJECT"]
        assert definition.chains() == {"OFFICE": [1, 2], "PROJECT": [1]}

    def test_levels_for_role(self):
        definition = WorkflowDefinition(
            id=200,
            entity_type="Cost Centre",
            partitioned=True,
            levels=(LevelDef(1, "201", "A"), LevelDef(2, "202", "A"), LevelDef(1, "202", "B")),
        )
        assert [d.key for d in definition.levels_for_role("202")] == [(2, "A"), (1, "B")]

    def test_level_zero_is_reserved(self):
        with pytest.raises(ValidationError, match="reserved"):
            WorkflowDefinition(id=1, entity_type="Doc", levels=(LevelDef(0, "101"),))

    def test_gap_in_chain_rejected(self):
        with pytest.raises(ValidationError, match="without gaps"):
            WorkflowDefinition(id=1, entity_type="Doc", levels=(LevelDef(1, "101"), LevelDef(3, "103")))

    def test_duplicate_level_rejected(self):
        with pytest.raises(ValidationError, match="duplicate level 1"):
            WorkflowDefinition(id=1, entity_type="Doc", levels=(LevelDef(1, "101"), LevelDef(1, "102")))

    def test_partitioned_levels_need_partition(self):
        with pytest.raises(ValidationError, match="needs a partition"):
            WorkflowDefinition(id=1, entity_type="Doc", partitioned=True, levels=(LevelDef(1, "101"),))

    def test_unpartitioned_levels_refuse_partition(self):
        with pytest.raises(ValidationError, match="not partitioned"):
            WorkflowDefinition(id=1, entity_type="Doc", levels=(LevelDef(1, "101", "A"),))

    def test_round_trip_through_dict(self):
        definition = WorkflowDefinition.from_dict({
            "id": "149",
            "name": "Item codes",
            "entity_type": "Item Code",
            "levels": [{"level": 1, "role": 101, "approval_limit": 50000}],
        })
        assert definition.id == 149
        assert definition.levels[0].role == "101"
        assert definition.levels[0].approval_limit == Decimal("50000")
        assert definition.to_dict()["levels"][0]["approval_limit"] == "50000"

    def test_from_dict_without_id(self):
        with pytest.raises(ValidationError, match="integer id"):
            WorkflowDefinition.from_dict({"entity_type": "Doc"})

    def test_level_from_dict_without_role(self):
        with pytest.raises(ValidationError, match="Invalid level"):
            LevelDef.from_dict({"level": 1})


class TestLoadDefinitions:
    """Test loading definitions from YAML files."""

    def test_load_mapping_document(self, tmp_path):
        path = tmp_path / "workflows.yaml"
        path.write_text(yaml.safe_dump({
            "workflows": [
                {"id": 149, "entity_type": "Item Code", "levels": [
                    {"level": 1, "role": "101"},
                    {"level": 2, "role": "102"},
                ]},
                {"id": 200, "entity_type": "Cost Centre", "partitioned": True, "levels": [
                    {"level": 1, "role": "201", "partition": "PROJECT"},
                ]},
            ]
        }))

        definitions = load_definitions(path)

        assert [d.id for d in definitions] == [149, 200]
        assert definitions[1].partitioned
        assert definitions[1].route(1, "PROJECT").role == "201"

    def test_load_list_document(self, tmp_path):
        path = tmp_path / "workflows.yaml"
        path.write_text("- id: 1\n  entity_type: Doc\n  levels:\n    - {level: 1, role: '101'}\n")
        assert load_definitions(str(path))[0].levels[0].role == "101"

    def test_empty_file_loads_nothing(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_definitions(path) == []

    def test_scalar_document_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("just a string\n")
        with pytest.raises(ValidationError, match="must be a list"):
            load_definitions(path)

    def test_load_from_mappings(self):
        definitions = load_definitions([{"id": 7, "levels": [{"level": 1, "role": "x"}]}])
        assert definitions[0].entity_type == "Workflow 7"
