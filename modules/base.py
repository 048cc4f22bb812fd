"""
Base class for all capability modules.

All modules must inherit from BaseModule and implement its abstract methods.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import AsyncIterator, Dict, List, Optional

import pytz

from core.errors import ErrorCodes
from core.models import ModuleResponse, ModuleUpdate, UserContext
from core.scoring import clamp_confidence, normalize, score_phrases
from utils.logger import get_logger


class BaseModule(ABC):
    """
    Abstract base class for capability modules.

    Modules are self-contained units that:
    - Score how well they match a raw input (can_handle)
    - Handle a command and return a ModuleResponse (handle)
    - Optionally stream asynchronous updates for a user (stream_updates)

    A module is constructed once, initialized with its configuration,
    registered, and lives for the process lifetime. Any per-user
    follow-up state belongs to the module itself.
    """

    def __init__(self, config: Optional[Dict] = None, timezone: str = "America/Los_Angeles"):
        """
        Initialize module.

        Args:
            config: Module-specific configuration from config.yaml
            timezone: Timezone string (e.g., "America/Los_Angeles") for date calculations
        """
        self.config = config or {}
        self.timezone = pytz.timezone(timezone)
        self.logger = get_logger(f"module.{self.get_id()}")

    @abstractmethod
    def get_id(self) -> str:
        """
        Return unique module identifier.

        Returns:
            Module ID (e.g., 'email', 'calendar', 'general')
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return display name."""
        pass

    @abstractmethod
    def get_description(self) -> str:
        """Return a one-line description of what the module does."""
        pass

    @abstractmethod
    def get_supported_commands(self) -> List[str]:
        """
        Return command phrases this module understands.

        Phrases may use '*' (any run of characters) and '?' (one character).

        Returns:
            List of phrases (e.g., ['read emails', 'check my inbox'])
        """
        pass

    def get_priority(self) -> int:
        """Higher priority wins ties on equal confidence."""
        return 1

    def get_domain_keywords(self) -> List[str]:
        """
        Keywords that mark input as belonging to this module's domain.

        The general assistant reads these to step aside for specific modules.
        """
        return []

    @abstractmethod
    async def handle(self, text: str, context: UserContext) -> ModuleResponse:
        """
        Handle a command.

        Args:
            text: Raw user input
            context: Authenticated user context

        Returns:
            ModuleResponse
        """
        pass

    async def can_handle(self, text: str, context: UserContext) -> float:
        """
        Confidence in [0, 1] that this module can handle the input.

        Best phrase score, then the module's adjust_confidence hook, then clamped.
        """
        normalized = normalize(text)
        confidence = score_phrases(normalized, self.get_supported_commands())
        confidence = self.adjust_confidence(confidence, normalized, context)
        return clamp_confidence(confidence)

    def adjust_confidence(self, confidence: float, normalized_input: str,
                          context: UserContext) -> float:
        """Domain-specific adjustment; override in subclasses."""
        return confidence

    async def initialize(self, config: Optional[Dict] = None) -> None:
        """
        Apply configuration and run module-specific setup.

        Args:
            config: Module configuration (replaces the constructor config when given)
        """
        if config is not None:
            self.config = config
        await self.on_initialize()
        self.logger.info(f"Initialized module: {self.get_id()}")

    async def on_initialize(self) -> None:
        """Module-specific setup hook."""
        return None

    async def stream_updates(self, context: UserContext) -> AsyncIterator[ModuleUpdate]:
        """
        Lazy, infinite stream of updates for a user. Not restartable.

        Default: no updates.
        """
        return
        yield  # makes this an async generator

    # Helper methods (don't need to override)

    def success(self, message: str, data=None) -> ModuleResponse:
        return ModuleResponse.ok(message, data)

    def error(self, message: str, error_code: Optional[str] = None) -> ModuleResponse:
        return ModuleResponse.error(message, error_code)

    def check_credentials(self, context: UserContext) -> Optional[ModuleResponse]:
        """Return an error response when the user's token cannot be used."""
        if not context.access_token:
            return self.error(
                "You need to sign in before I can access your account.",
                ErrorCodes.TOKEN_EXPIRED
            )
        if context.is_token_expired:
            return self.error(
                "Your sign-in has expired. Please sign in again and retry.",
                ErrorCodes.TOKEN_EXPIRED
            )
        return None

    def get_today_in_timezone(self) -> date:
        """
        Get today's date in the configured timezone.

        Returns:
            date object representing today in the configured timezone
        """
        return datetime.now(self.timezone).date()

    def get_now_in_timezone(self) -> datetime:
        """
        Get current datetime in the configured timezone.

        Returns:
            datetime object representing now in the configured timezone
        """
        return datetime.now(self.timezone)

    def matches_keyword(self, text: str) -> bool:
        """
        Check if text contains any of this module's domain keywords.

        Args:
            text: Text to check

        Returns:
            True if any keyword matches
        """
        text_lower = text.lower()
        return any(keyword in text_lower for keyword in self.get_domain_keywords())
