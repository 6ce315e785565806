# apiscenario/data_loader.py
"""
Data sources for data-driven tests.

Each source yields a list of records (dicts):

- csv:    header row + rows; cell values typed as int, float, bool or str
- json:   a file holding an object or an array of objects
- inline: `data:` given directly in the scenario file

Relative paths resolve against the scenario file's directory.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from apiscenario.errors import DataSourceError
from apiscenario.models import DataSource

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

_BOOL_LITERALS = {
    "true": True, "t": True, "1": True,
    "false": False, "f": False, "0": False,
}


def parse_csv_value(value: str) -> Any:
    """int, then float, then bool, else the raw string"""
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    lowered = value.strip().lower()
    if lowered in _BOOL_LITERALS:
        return _BOOL_LITERALS[lowered]
    return value


class DataLoader:
    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()

    def resolve_path(self, path: str) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.base_dir / p

    def load(self, source: DataSource) -> List[Record]:
        kind = source.type.lower()
        if kind == "csv":
            return self.load_csv(source.path)
        if kind == "json":
            return self.load_json(source.path)
        if kind == "inline":
            return self._records(source.data, "inline data")
        raise DataSourceError(f"unsupported data source type: {source.type}")

    def load_all(self, sources: Dict[str, DataSource]) -> Dict[str, List[Record]]:
        loaded: Dict[str, List[Record]] = {}
        for name, source in sources.items():
            try:
                loaded[name] = self.load(source)
            except DataSourceError as e:
                raise DataSourceError(f"Failed to load data source '{name}': {e}") from e
            logger.debug(f"Loaded data source '{name}' ({source.type}, {len(loaded[name])} records)")
        return loaded

    def load_csv(self, path: str) -> List[Record]:
        full_path = self.resolve_path(path)
        try:
            with full_path.open("r", encoding="utf-8", newline="") as f:
                reader = csv.reader(f)
                try:
                    headers = next(reader)
                except StopIteration:
                    raise DataSourceError(f"failed to read CSV headers: {full_path} is empty") from None
                headers = [h.strip() for h in headers]

                records: List[Record] = []
                for row in reader:
                    if not row:
                        continue
                    if len(row) != len(headers):
                        raise DataSourceError(
                            f"CSV row has {len(row)} columns, expected {len(headers)}"
                        )
                    records.append({h: parse_csv_value(v) for h, v in zip(headers, row)})
                return records
        except OSError as e:
            raise DataSourceError(f"failed to open CSV file {full_path}: {e}") from e
        except csv.Error as e:
            raise DataSourceError(f"failed to read CSV row: {e}") from e

    def load_json(self, path: str) -> List[Record]:
        full_path = self.resolve_path(path)
        try:
            with full_path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise DataSourceError(f"failed to open JSON file {full_path}: {e}") from e
        except ValueError as e:
            raise DataSourceError(f"failed to parse JSON file {full_path}: {e}") from e
        return self._records(data, "JSON file")

    @staticmethod
    def _records(data: Any, what: str) -> List[Record]:
        if isinstance(data, dict):
            return [data]
        if isinstance(data, list):
            for i, item in enumerate(data):
                if not isinstance(item, dict):
                    raise DataSourceError(f"{what} item {i} is not an object")
            return list(data)
        raise DataSourceError(f"{what} must contain an object or array of objects")
