"""apiscenario: declarative API test scenario runner."""

from apiscenario.config import EnvironmentConfig, Settings
from apiscenario.engine import ExecutionEngine
from apiscenario.errors import (
    ApiScenarioError,
    ConfigError,
    DataSourceError,
    ExtractionError,
    ScenarioValidationError,
    TransportError,
)
from apiscenario.loader import load_scenario, load_scenarios_from_dir
from apiscenario.models import Scenario
from apiscenario.reporter import Reporter
from apiscenario.results import ScenarioResult, StepResult, StepStatus
from apiscenario.variables import Scope, VariableContext

__version__ = "0.1.0"

__all__ = [
    "ApiScenarioError",
    "ConfigError",
    "DataSourceError",
    "EnvironmentConfig",
    "ExecutionEngine",
    "ExtractionError",
    "Reporter",
    "Scenario",
    "ScenarioResult",
    "ScenarioValidationError",
    "Scope",
    "Settings",
    "StepResult",
    "StepStatus",
    "TransportError",
    "VariableContext",
    "load_scenario",
    "load_scenarios_from_dir",
]
