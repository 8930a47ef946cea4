"""Tests for the workflow registry cache."""

from unittest.mock import MagicMock

import pytest

from approvalhub.core.exceptions import LevelNotFound, WorkflowNotFound
from approvalhub.core.workflow.definitions import LevelDef, WorkflowDefinition
from approvalhub.core.workflow.registry import WorkflowRegistry
from approvalhub.core.workflow.stores import InMemoryWorkflowStore
from approvalhub.services.stores import SqlAlchemyWorkflowStore
from tests.factories import create_workflow


def _definition(workflow_id=149, *roles):
    roles = roles or ("101", "102")
    return WorkflowDefinition(
        id=workflow_id,
        entity_type="Item Code",
        levels=tuple(LevelDef(i + 1, r) for i, r in enumerate(roles)),
    )


class TestWorkflowRegistry:
    """Test lookups and the invalidation contract."""

    def test_get_caches_definition(self):
        store = MagicMock()
        store.find_by_workflow_id.return_value = _definition()
        registry = WorkflowRegistry(store)

        first = registry.get(149)
        second = registry.get(149)

        assert first is second
        store.find_by_workflow_id.assert_called_once_with(149)
        assert registry.is_cached(149)

    def test_unknown_workflow(self):
        store = MagicMock()
        store.find_by_workflow_id.return_value = None
        registry = WorkflowRegistry(store)

        with pytest.raises(WorkflowNotFound) as exc:
            registry.get(999)
        assert exc.value.status_code == 404
        assert not registry.is_cached(999)

    def test_invalidate_one(self):
        store = MagicMock()
        store.find_by_workflow_id.side_effect = lambda wid: _definition(wid)
        registry = WorkflowRegistry(store)
        registry.get(1)
        registry.get(2)

        registry.invalidate(1)

        assert not registry.is_cached(1)
        assert registry.is_cached(2)
        registry.get(1)
        assert store.find_by_workflow_id.call_count == 3

    def test_invalidate_all(self):
        store = MagicMock()
        store.find_by_workflow_id.side_effect = lambda wid: _definition(wid)
        registry = WorkflowRegistry(store)
        registry.get(1)
        registry.get(2)

        registry.invalidate()

        assert not registry.is_cached(1)
        assert not registry.is_cached(2)

    def test_stale_until_invalidated(self):
        """Edits to the store are only seen after an invalidation."""
        store = InMemoryWorkflowStore([_definition(149, "101", "102")])
        registry = WorkflowRegistry(store)
        assert registry.resolve(149, 2).role == "102"

        store.put(_definition(149, "101", "999"))
        assert registry.resolve(149, 2).role == "102"

        registry.invalidate(149)
        assert registry.resolve(149, 2).role == "999"

    def test_resolve_past_chain_end(self):
        registry = WorkflowRegistry(InMemoryWorkflowStore([_definition()]))
        with pytest.raises(LevelNotFound) as exc:
            registry.resolve(149, 3)
        assert exc.value.level == 3
        assert exc.value.partition is None

    def test_reads_database_rows(self, db_session):
        create_workflow(db_session, workflow_id=321, levels=[(1, "a"), (2, "b"), (3, "c")])

        registry = WorkflowRegistry(SqlAlchemyWorkflowStore(db=db_session))
        definition = registry.get(321)

        assert [d.role for d in definition.levels] == ["a", "b", "c"]
        assert registry.resolve(321, 3).role == "c"

    def test_store_read_outside_lock(self):
        registry = WorkflowRegistry(MagicMock())
        held = []

        def load(workflow_id):
            held.append(registry._lock.locked())
            return _definition(workflow_id)

        registry.store.find_by_workflow_id.side_effect = load
        registry.get(149)

        assert held == [False]
        assert registry.is_cached(149)

    def test_invalidated_during_load_is_not_cached(self):
        registry = WorkflowRegistry(MagicMock())

        def load(workflow_id):
            registry.invalidate(workflow_id)
            return _definition(workflow_id, "101", "999")

        registry.store.find_by_workflow_id.side_effect = load

        assert registry.get(149).route(2).role == "999"
        assert not registry.is_cached(149)
