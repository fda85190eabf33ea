"""
Roll tables.

A roll table maps ranges of a roll total to result texts. Tables are loaded
from YAML and validated against roll_table.schema.json:

    tables:
      - name: Treasure
        formula: 1d6
        entries:
          - range: [1, 3]
            text: Copper coins
          - range: 4
            text: A silver ring
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..config import load_yaml_file, validate_document
from ..core.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class TableEntry:
    """Result text for an inclusive range of roll totals."""
    low: int
    high: int
    text: str

    def matches(self, total) -> bool:
        return self.low <= total <= self.high

    def to_dict(self) -> dict:
        return {"range": [self.low, self.high], "text": self.text}


@dataclass
class RollTable:
    """A named table drawn from by rolling its formula."""
    name: str
    formula: str = "1d100"
    entries: list[TableEntry] = field(default_factory=list)

    def results_for(self, total) -> list[TableEntry]:
        return [entry for entry in self.entries if entry.matches(total)]


@dataclass
class TableDraw:
    """Outcome of drawing from a roll table."""
    table: str
    roll: Any
    results: list[TableEntry] = field(default_factory=list)

    @property
    def texts(self) -> list[str]:
        return [entry.text for entry in self.results]

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "roll": self.roll.to_dict(),
            "results": [entry.to_dict() for entry in self.results]
        }


def parse_roll_table(data: dict) -> RollTable:
    """Build a RollTable from one table document."""
    entries = []
    for item in data.get("entries", []):
        bounds = item["range"]
        if isinstance(bounds, int):
            low = high = bounds
        else:
            low, high = bounds
        if low > high:
            raise ConfigError(f"Roll table {data['name']}: range {low}-{high} is reversed")
        entries.append(TableEntry(low=low, high=high, text=item["text"]))

    return RollTable(
        name=data["name"],
        formula=data.get("formula", "1d100"),
        entries=entries
    )


def load_roll_tables(path: str | Path) -> dict[str, RollTable]:
    """Load roll tables from a YAML file, keyed by table name."""
    data = load_yaml_file(Path(path))
    if not data:
        return {}

    validate_document(data, "roll_table")

    tables = {}
    for table_data in data.get("tables", []):
        table = parse_roll_table(table_data)
        if table.name in tables:
            logger.warning(f"Duplicate roll table {table.name}, keeping the last one")
        tables[table.name] = table

    logger.debug(f"Loaded {len(tables)} roll tables from {path}")
    return tables


def find_table(tables: dict[str, RollTable], name: str) -> Optional[RollTable]:
    return tables.get(name.strip())
