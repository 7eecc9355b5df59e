"""Survival Trading Bot - oracle-driven spot trading loop."""

__version__ = "0.1.0"
