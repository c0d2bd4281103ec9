"""
Rule contract: the pluggable detection and repair logic the pipeline calls.

Rules are opaque to the core. A rule declares which tables it reads and
implements the hooks the pipeline stages invoke on it.
"""

from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Type

from cleaning_core.datamodel import Cell
from cleaning_core.table import Table


class Violation:
    """Cells that together break one rule."""

    def __init__(self, rule_name: str, cells: Iterable[Cell], vid: Optional[int] = None):
        self.rule_name = rule_name
        self.cells = frozenset(cells)
        self.vid = vid

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Violation):
            return NotImplemented
        return self.rule_name == other.rule_name and self.cells == other.cells

    def __hash__(self) -> int:
        return hash((self.rule_name, self.cells))

    def __repr__(self) -> str:
        return f"Violation({self.rule_name!r}, vid={self.vid}, {len(self.cells)} cell(s))"


class Fix:
    """Assigns a new value to the cell it targets."""

    def __init__(self, cell: Cell, new_value: Any):
        self.cell = cell
        self.new_value = new_value

    def __repr__(self) -> str:
        return f"Fix({self.cell.column}@{self.cell.row_id} -> {self.new_value!r})"


class Rule:
    """
    Base class for cleaning rules.

    Subclasses override ``detect`` for single-input rules or ``detect_pair``
    for rules declared over two tables, and ``repair`` if they can propose fixes.
    """

    #: Columns single-input data is partitioned on before detection.
    block_on: Sequence[str] = ()

    def __init__(self, name: str, tables: Sequence[str], parameters: Optional[Dict[str, Any]] = None):
        if not name:
            raise ValueError("Rule name cannot be empty.")
        self.name = name
        self.tables = list(tables)
        self.parameters = dict(parameters or {})

    @property
    def key(self) -> str:
        """Identity of the rule, used to key its cache entry."""
        return self.name

    def supports_two_inputs(self) -> bool:
        return len(self.tables) == 2

    def implements(self, hook: str) -> bool:
        return getattr(type(self), hook) is not getattr(Rule, hook)

    def query(self, table: Table) -> Table:
        """Shape an input table (projection, filtering) before detection."""
        return table

    def detect(self, table: Table) -> Iterable[Violation]:
        raise NotImplementedError(f"Rule {self.name} does not detect on a single table.")

    def detect_pair(self, left: Table, right: Table) -> Iterable[Violation]:
        raise NotImplementedError(f"Rule {self.name} does not detect on a pair of tables.")

    def repair(self, violation: Violation) -> Iterable[Fix]:
        return ()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, tables={self.tables!r})"


RULE_TYPES: Dict[str, Type[Rule]] = {}


def register_rule(type_name: str) -> Callable[[Type[Rule]], Type[Rule]]:
    """Class decorator registering a Rule subclass under ``type_name``."""

    def decorator(cls: Type[Rule]) -> Type[Rule]:
        RULE_TYPES[type_name] = cls
        return cls

    return decorator


def create_rule(
    type_name: str, name: str, tables: Sequence[str], parameters: Optional[Dict[str, Any]] = None
) -> Rule:
    rule_type = RULE_TYPES.get(type_name)
    if not rule_type:
        raise ValueError(f"Unknown rule type: {type_name}")
    return rule_type(name, tables, parameters)
