"""Exception types raised by the rehab engine."""

from __future__ import annotations

from typing import Mapping


class ConfigurationError(ValueError):
    """A configuration contract was violated. Raised before a session starts."""


class SessionStorageError(OSError):
    """The session record could not be durably written."""


class SessionSaveError(RuntimeError):
    """A finished session could not be persisted.

    The comparison report is still attached so callers can show it while
    reporting the failure, along with the session events produced by the
    tick that finished the session.
    """

    def __init__(self, message: str, report=None, events=None):
        super().__init__(message)
        self.report = report
        self.events = list(events or [])


def config_float(name: str, value) -> float:
    """``float(value)`` for a configuration field, or a ConfigurationError naming it."""
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


def config_bool(name: str, value) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{name} must be true or false, got {value!r}")
    return value


def config_mapping(section: str, data) -> Mapping:
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"'{section}' must be a mapping, got {type(data).__name__}")
    return data
