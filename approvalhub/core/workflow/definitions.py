"""Workflow definitions and their routing table.

A workflow is a strictly linear chain of levels. Partitioned workflows hold
one independent chain per partition value (e.g. a cost-centre type); the
entity's own partition value selects which chain it travels.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from approvalhub.core.exceptions import ValidationError
from approvalhub.core.workflow.states import FIRST_LEVEL


RouteKey = Tuple[int, Optional[str]]


@dataclass(frozen=True)
class LevelDef:
    """One step of a workflow chain."""

    level: int
    role: str
    partition: Optional[str] = None
    approval_limit: Optional[Decimal] = None  # advisory only

    @property
    def key(self) -> RouteKey:
        return (self.level, self.partition)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "role": self.role,
            "partition": self.partition,
            "approval_limit": str(self.approval_limit) if self.approval_limit is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LevelDef":
        try:
            level = int(data["level"])
            role = str(data["role"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid level definition {data!r}: {e}") from e
        partition = data.get("partition")
        limit = data.get("approval_limit")
        return cls(
            level=level,
            role=role,
            partition=str(partition) if partition is not None else None,
            approval_limit=Decimal(str(limit)) if limit is not None else None,
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """An ordered set of level definitions for one workflow id."""

    id: int
    entity_type: str
    partitioned: bool = False
    levels: Tuple[LevelDef, ...] = ()
    name: Optional[str] = None
    _routes: Dict[RouteKey, LevelDef] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "levels", tuple(sorted(self.levels, key=_level_sort_key)))
        self.validate()
        self._routes.update({d.key: d for d in self.levels})

    def validate(self) -> None:
        """
        Check the data-model invariants.

        Raises:
            ValidationError: if levels are malformed
        """
        seen: Dict[RouteKey, LevelDef] = {}
        for detail in self.levels:
            if detail.level < FIRST_LEVEL:
                raise ValidationError(
                    f"Workflow {self.id}: level {detail.level} is reserved, levels start at {FIRST_LEVEL}"
                )
            if self.partitioned and detail.partition is None:
                raise ValidationError(
                    f"Workflow {self.id}: level {detail.level} needs a partition"
                )
            if not self.partitioned and detail.partition is not None:
                raise ValidationError(
                    f"Workflow {self.id} is not partitioned but level {detail.level} "
                    f"declares partition {detail.partition}"
                )
            if detail.key in seen:
                raise ValidationError(
                    f"Workflow {self.id}: duplicate level {detail.level}"
                    + (f" for partition {detail.partition}" if detail.partition is not None else "")
                )
            seen[detail.key] = detail

        for partition, numbers in self.chains().items():
            expected = list(range(FIRST_LEVEL, len(numbers) + FIRST_LEVEL))
            if numbers != expected:
                where = f" partition {partition}" if partition is not None else ""
                raise ValidationError(
                    f"Workflow {self.id}{where}: levels must be numbered "
                    f"{FIRST_LEVEL}..{len(numbers)} without gaps, got {numbers}"
                )

    def chains(self) -> Dict[Optional[str], List[int]]:
        """Level numbers per partition (a single ``None`` chain when unpartitioned)."""
        chains: Dict[Optional[str], List[int]] = {}
        for detail in self.levels:
            chains.setdefault(detail.partition, []).append(detail.level)
        return {p: sorted(levels) for p, levels in chains.items()}

    def route(self, level: int, partition: Optional[str] = None) -> Optional[LevelDef]:
        """Look up the level definition for ``(level, partition)``."""
        if not self.partitioned:
            partition = None
        return self._routes.get((level, partition))

    def levels_for_role(self, role: str) -> List[LevelDef]:
        return [d for d in self.levels if d.role == role]

    @property
    def partitions(self) -> List[str]:
        return sorted({d.partition for d in self.levels if d.partition is not None})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entity_type": self.entity_type,
            "partitioned": self.partitioned,
            "levels": [d.to_dict() for d in self.levels],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        try:
            workflow_id = int(data["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Workflow definition needs an integer id: {e}") from e
        return cls(
            id=workflow_id,
            name=data.get("name"),
            entity_type=str(data.get("entity_type") or data.get("name") or f"Workflow {workflow_id}"),
            partitioned=bool(data.get("partitioned", False)),
            levels=tuple(LevelDef.from_dict(d) for d in data.get("levels") or []),
        )


def _level_sort_key(detail: LevelDef) -> Tuple[str, int]:
    return (detail.partition or "", detail.level)


def load_definitions(source: Union[str, Path, Iterable[Dict[str, Any]]]) -> List[WorkflowDefinition]:
    """
    Load workflow definitions from a YAML file or already-parsed mappings.

    The YAML document is either a list of workflows or a mapping with a
    ``workflows`` key::

        workflows:
          - id: 149
            entity_type: Item Code
            levels:
              - {level: 1, role: "101"}
              - {level: 2, role: "102", approval_limit: 50000}
    """
    if isinstance(source, (str, Path)):
        with open(source, "r") as f:
            data = yaml.safe_load(f) or []
    else:
        data = list(source)

    if isinstance(data, dict):
        data = data.get("workflows") or []
    if not isinstance(data, list):
        raise ValidationError("Workflow definitions must be a list")

    return [WorkflowDefinition.from_dict(item) for item in data]
