# apiscenario/errors.py
"""Exception hierarchy for apiscenario."""

from __future__ import annotations


class ApiScenarioError(Exception):
    """Base class for all apiscenario errors"""


class ConfigError(ApiScenarioError):
    """Configuration file could not be read or is invalid"""


class ScenarioValidationError(ApiScenarioError):
    """Scenario definition is malformed (detected at load time)"""


class DataSourceError(ApiScenarioError):
    """Data source could not be loaded or has the wrong shape"""


class ExtractionError(ApiScenarioError):
    """Value could not be extracted from a response"""


class TransportError(ApiScenarioError):
    """Network or protocol level failure while executing a request"""

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts
