"""Workflow registry with an explicit cache-invalidation contract.

Definitions are provisioned out-of-band and read on every engine call, so
they are cached per workflow id. Whoever changes a definition must call
``invalidate`` (the workflow administration API does this after each write).
"""

import logging
import threading
from typing import Dict, Optional

from approvalhub.core.exceptions import LevelNotFound, WorkflowNotFound
from approvalhub.core.workflow.definitions import LevelDef, WorkflowDefinition
from approvalhub.core.workflow.stores import WorkflowStore

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """Read-only lookup of workflow definitions and their routes."""

    def __init__(self, store: WorkflowStore):
        self.store = store
        self._cache: Dict[int, WorkflowDefinition] = {}
        self._lock = threading.Lock()
        self._generation = 0

    def get(self, workflow_id: int) -> WorkflowDefinition:
        """
        Get a workflow definition, loading it from the store on a cache miss.

        The store is read without holding the lock; when two callers miss at
        once the first one to publish wins and both return that definition.

        Raises:
            WorkflowNotFound: If the store has no definition for the id
        """
        with self._lock:
            definition = self._cache.get(workflow_id)
            generation = self._generation
        if definition is not None:
            return definition

        loaded = self.store.find_by_workflow_id(workflow_id)
        if loaded is None:
            raise WorkflowNotFound(workflow_id)

        with self._lock:
            if self._generation != generation:
                # invalidated while loading; don't publish a possibly stale copy
                return loaded
            definition = self._cache.setdefault(workflow_id, loaded)
        if definition is loaded:
            logger.debug("Cached workflow %s (%d levels)", workflow_id, len(loaded.levels))
        return definition

    def resolve(self, workflow_id: int, level: int, partition: Optional[str] = None) -> LevelDef:
        """
        Resolve the level definition routed at ``(level, partition)``.

        Raises:
            WorkflowNotFound: If the workflow id is unknown
            LevelNotFound: If the chain has no such level (i.e. it is exhausted)
        """
        definition = self.get(workflow_id)
        detail = definition.route(level, partition)
        if detail is None:
            raise LevelNotFound(workflow_id, level, partition if definition.partitioned else None)
        return detail

    def invalidate(self, workflow_id: Optional[int] = None) -> None:
        """Drop one cached definition, or all of them when no id is given."""
        with self._lock:
            self._generation += 1
            if workflow_id is None:
                self._cache.clear()
            else:
                self._cache.pop(workflow_id, None)
        logger.info("Workflow registry invalidated (%s)", workflow_id if workflow_id is not None else "all")

    def is_cached(self, workflow_id: int) -> bool:
        with self._lock:
            return workflow_id in self._cache
