"""
Capability modules.

Each module inherits from BaseModule and is registered with a
ModuleRegistry; modules.loader builds the ones enabled in config.yaml.
"""

from .base import BaseModule
from .registry import ModuleRegistry

__all__ = ["BaseModule", "ModuleRegistry"]
