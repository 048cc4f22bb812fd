"""
Configuration loading for the dispatcher and modules.

config.yaml layout:

    modules:
      email:    {enabled: true, poll_interval_seconds: 30}
      calendar: {enabled: true, reminder_minutes: 15}
      general:  {enabled: true, routing_min_confidence: 0.7}
    dispatcher:
      preferred_min_confidence: 0.1
      auto_min_confidence: 0.3
      fallback_module_id: general
      fallback_error_codes: [...]
      fallback_message_markers: [...]
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import yaml

from core.errors import ErrorCodes
from utils.logger import get_logger

logger = get_logger("settings")

DEFAULT_FALLBACK_ERROR_CODES = (
    ErrorCodes.NOT_SUPPORTED,
    ErrorCodes.INVALID_COMMAND,
    ErrorCodes.UNKNOWN_COMMAND,
    ErrorCodes.CANNOT_HANDLE,
    ErrorCodes.NOT_UNDERSTOOD,
    ErrorCodes.UNSUPPORTED_OPERATION,
)

DEFAULT_FALLBACK_MESSAGE_MARKERS = (
    "don't understand",
    "can't help",
    "not supported",
    "invalid command",
    "unknown command",
    "cannot handle",
    "not sure how",
    "unable to process",
)


def load_config(path: str = "config.yaml") -> Dict:
    """Load configuration from a YAML file; missing or broken file -> defaults."""
    if not os.path.exists(path):
        logger.warning(f"Config file not found at {path}, using defaults")
        return {"modules": {}}
    try:
        with open(path, "r") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading {path}: {e}, using defaults")
        return {"modules": {}}
    config.setdefault("modules", {})
    return config


@dataclass(frozen=True)
class FallbackPolicy:
    """
    Decides whether a failed response means "this module could not handle it".

    Matching is a plain enum/substring check: the error code against a
    reserved set, the lowercased message against phrase markers.
    """
    error_codes: Tuple[str, ...] = DEFAULT_FALLBACK_ERROR_CODES
    message_markers: Tuple[str, ...] = DEFAULT_FALLBACK_MESSAGE_MARKERS

    def should_fallback(self, response) -> bool:
        if response.success:
            return False
        code = (response.error_code or "").upper()
        if code and code in {c.upper() for c in self.error_codes}:
            return True
        message = (response.message or "").lower()
        return any(marker.lower() in message for marker in self.message_markers)


@dataclass(frozen=True)
class DispatchSettings:
    """Thresholds and fallback wiring for CommandDispatcher."""
    preferred_min_confidence: float = 0.1
    auto_min_confidence: float = 0.3
    fallback_module_id: str = "general"
    fallback_confidence: float = 0.5
    fallback_policy: FallbackPolicy = field(default_factory=FallbackPolicy)

    @classmethod
    def from_config(cls, config: Optional[Dict]) -> "DispatchSettings":
        section = (config or {}).get("dispatcher") or {}
        policy = FallbackPolicy(
            error_codes=tuple(section.get("fallback_error_codes", DEFAULT_FALLBACK_ERROR_CODES)),
            message_markers=tuple(section.get("fallback_message_markers", DEFAULT_FALLBACK_MESSAGE_MARKERS)),
        )
        return cls(
            preferred_min_confidence=float(section.get("preferred_min_confidence", 0.1)),
            auto_min_confidence=float(section.get("auto_min_confidence", 0.3)),
            fallback_module_id=str(section.get("fallback_module_id", "general")),
            fallback_confidence=float(section.get("fallback_confidence", 0.5)),
            fallback_policy=policy,
        )
