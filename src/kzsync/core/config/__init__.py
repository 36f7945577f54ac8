"""
Configuration subsystem for kzsync.

Static, environment-driven configuration with .env support. Rule documents
for the quarantine engine are not configuration in this sense; they are read
fresh on every engine run.
"""

from kzsync.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
