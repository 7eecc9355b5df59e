"""Error taxonomy shared by adapters, persistence and the cycle engine."""

from __future__ import annotations


class SurvivalBotError(Exception):
    """Base error for the trading bot."""


class AdapterError(SurvivalBotError):
    """Raised when an external collaborator call fails."""


class ExchangeError(AdapterError):
    """Raised on exchange transport failures or non-success responses."""


class OracleError(AdapterError):
    """Raised when the decision oracle cannot be reached."""


class PersistenceError(SurvivalBotError):
    """Raised when the store is unavailable or a query fails."""


class InvariantViolation(SurvivalBotError):
    """Raised when a write would break a data model invariant."""


class DecisionParseError(ValueError):
    """Raised internally while extracting a decision from oracle text."""
