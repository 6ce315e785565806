# apiscenario/loader.py
"""
Scenario file loading.

YAML (`.yaml`, `.yml`) and JSON (`.json`) files are parsed and validated
into `Scenario` models. Anything malformed is reported once here as a
`ScenarioValidationError`; the engine only ever sees valid scenarios.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import yaml
from pydantic import ValidationError

from apiscenario.errors import ScenarioValidationError
from apiscenario.models import Scenario

logger = logging.getLogger(__name__)

SCENARIO_SUFFIXES = (".yaml", ".yml", ".json")


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_scenario(data: Any, source: str = "<data>") -> Scenario:
    if not isinstance(data, dict):
        raise ScenarioValidationError(f"{source}: scenario must be a mapping")
    try:
        return Scenario.model_validate(data)
    except ValidationError as e:
        raise ScenarioValidationError(f"{source}: {_format_validation_error(e)}") from e


def load_scenario_with_path(path: Union[str, Path]) -> Tuple[Scenario, Path]:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ScenarioValidationError(f"failed to read scenario file {p}: {e}") from e

    try:
        if p.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise ScenarioValidationError(f"failed to parse scenario file {p}: {e}") from e

    scenario = parse_scenario(data, str(p))
    scenario.base_dir = str(p.parent)
    return scenario, p


def load_scenario(path: Union[str, Path]) -> Scenario:
    scenario, _ = load_scenario_with_path(path)
    return scenario


def find_scenario_files(directory: Union[str, Path]) -> List[Path]:
    root = Path(directory)
    if not root.is_dir():
        raise ScenarioValidationError(f"not a directory: {root}")
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in SCENARIO_SUFFIXES)


def load_scenarios_from_dir(directory: Union[str, Path]) -> List[Scenario]:
    scenarios = [load_scenario(p) for p in find_scenario_files(directory)]
    logger.info(f"Loaded {len(scenarios)} scenario(s) from {directory}")
    return scenarios


def load_scenario_paths(paths: List[Union[str, Path]]) -> Dict[Path, Scenario]:
    """Load files and directories; returns scenario by file path, in order"""
    out: Dict[Path, Scenario] = {}
    for raw in paths:
        p = Path(raw)
        files = find_scenario_files(p) if p.is_dir() else [p]
        for f in files:
            out[f] = load_scenario(f)
    return out
