"""Service modules"""
from .runtime import Runtime
from .sync import SessionRiskSync, parse_positions

__all__ = ["Runtime", "SessionRiskSync", "parse_positions"]
