"""Exception taxonomy for scenario execution and visual comparison."""

from __future__ import annotations


class PathfinderError(Exception):
    """Base class for all engine errors."""


class StepError(PathfinderError):
    """A single scripted action failed."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return self.message


class ScenarioError(PathfinderError):
    """A scenario failed outside the step loop (context setup, teardown)."""


class PersistenceError(PathfinderError):
    """A write to the storage backend failed."""


class ComparisonError(PathfinderError):
    """An image pair could not be fetched, decoded or diffed."""


class ConfigurationError(PathfinderError):
    """Invalid configuration or caller-supplied setting."""
