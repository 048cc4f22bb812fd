"""
General Assistant Module - catch-all handler and dispatcher fallback target.

Handles:
- Greetings and general questions, answered with the OpenAI client
- Intent-based re-routing into a specific module when the model is confident
- Stepping aside (low confidence) when input mentions another module's domain
"""

import asyncio
from typing import Dict, List, Optional

from core.env_loader import get_env
from core.errors import ErrorCodes
from core.models import ModuleResponse, UserContext
from core.openai_client import ASSISTANT_SYSTEM_PROMPT, DEFAULT_MODEL, OpenAIClient
from core.scoring import clamp_confidence
from modules.base import BaseModule

GENERAL_CONFIDENCE = 0.9
DOMAIN_CONFIDENCE = 0.3

EMPTY_REPLY_MESSAGE = "I'm here to help. Could you tell me a bit more about what you need?"
UNAVAILABLE_MESSAGE = "Sorry, I couldn't process your request right now. Please try again later."


class GeneralAssistantModule(BaseModule):
    """LLM-backed assistant for anything the domain modules do not cover."""

    def __init__(self, config: Optional[Dict] = None, timezone: str = "America/Los_Angeles",
                 registry=None, conversation=None, openai_client: Optional[OpenAIClient] = None):
        """
        Args:
            config: modules.general section of config.yaml
            timezone: Timezone string
            registry: ModuleRegistry, read live for routing targets and domain keywords
            conversation: ConversationContextService for multi-turn replies (optional)
            openai_client: Preconfigured client; built from api_key / OPENAI_API_KEY otherwise
        """
        super().__init__(config, timezone)
        self.registry = registry
        self.conversation = conversation
        self.client = openai_client

    def get_id(self) -> str:
        return "general"

    def get_name(self) -> str:
        return "General AI Assistant"

    def get_description(self) -> str:
        return "Answers general questions and routes requests to the right module"

    def get_supported_commands(self) -> List[str]:
        return ["*"]

    @property
    def routing_min_confidence(self) -> float:
        return float(self.config.get("routing_min_confidence", 0.7))

    @property
    def delegate_min_confidence(self) -> float:
        return float(self.config.get("delegate_min_confidence", 0.5))

    @property
    def history_messages(self) -> int:
        return int(self.config.get("history_messages", 5))

    async def on_initialize(self) -> None:
        if self.client is not None:
            return
        api_key = self.config.get("api_key") or get_env("OPENAI_API_KEY")
        if not api_key:
            self.logger.warning("OpenAI API key not configured. General assistant features will be disabled.")
            return
        self.client = OpenAIClient(api_key, model=self.config.get("model", DEFAULT_MODEL))

    def _other_modules(self) -> List[BaseModule]:
        if self.registry is None:
            return []
        return [m for m in self.registry.list() if m.get_id().lower() != self.get_id()]

    async def can_handle(self, text: str, context: UserContext) -> float:
        if self.client is None:
            return 0.0

        for module in self._other_modules():
            if module.matches_keyword(text):
                return DOMAIN_CONFIDENCE
        return GENERAL_CONFIDENCE

    async def handle(self, text: str, context: UserContext) -> ModuleResponse:
        if self.client is None:
            return self.error(
                "The general assistant is not configured. Please contact your administrator.",
                ErrorCodes.NOT_CONFIGURED
            )

        routed = await self._route_by_intent(text, context)
        if routed is not None:
            return routed

        return await self._answer(text, context)

    # ------------------------------------------------------------------
    # Intent routing
    # ------------------------------------------------------------------

    def _match_target(self, target: str, modules: List[BaseModule]) -> Optional[BaseModule]:
        target = target.strip().lower()
        if not target or target == self.get_id():
            return None

        for module in modules:
            if module.get_id().lower() == target:
                return module
        for module in modules:
            module_id = module.get_id().lower()
            if target in module_id or module_id in target:
                return module
        for module in modules:
            if target in [k.lower() for k in module.get_domain_keywords()]:
                return module
        return None

    async def _route_by_intent(self, text: str, context: UserContext) -> Optional[ModuleResponse]:
        """Delegate to a specific module when intent analysis is confident; None otherwise."""
        modules = self._other_modules()
        if not modules:
            return None

        catalog = [
            {"id": m.get_id(), "description": m.get_description(), "keywords": m.get_domain_keywords()}
            for m in modules
        ]
        try:
            intent = await asyncio.to_thread(self.client.analyze_intent, text, catalog)
        except Exception:
            self.logger.error(f"Error analyzing intent for input: {text!r}", exc_info=True)
            return None

        if not isinstance(intent, dict) or "error" in intent:
            self.logger.warning(f"Intent analysis unavailable: {intent}")
            return None

        target = str(intent.get("target_module") or "general")
        try:
            confidence = float(intent.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0

        if not intent.get("should_route_to_specific_module"):
            return None
        if confidence < self.routing_min_confidence:
            self.logger.info(f"Intent confidence too low ({confidence:.2f}) for routing to {target}")
            return None

        module = self._match_target(target, modules)
        if module is None:
            return None

        try:
            module_confidence = clamp_confidence(await module.can_handle(text, context))
            if module_confidence <= self.delegate_min_confidence:
                return None

            self.logger.info(
                f"Routing to {module.get_id()} with confidence {confidence:.2f}: "
                f"{intent.get('reasoning', '')}"
            )
            response = await module.handle(text, context)
        except Exception:
            self.logger.error(f"Error routing to module {module.get_id()}", exc_info=True)
            return None

        if not isinstance(response, ModuleResponse):
            return None
        response.metadata["routedTo"] = module.get_id()
        return response

    # ------------------------------------------------------------------
    # General answers
    # ------------------------------------------------------------------

    def _system_prompt(self) -> str:
        modules = self._other_modules()
        if not modules:
            return ASSISTANT_SYSTEM_PROMPT
        lines = [
            f"- {m.get_name()}: {m.get_description()} (e.g. '{m.get_supported_commands()[0]}')"
            for m in modules if m.get_supported_commands()
        ]
        return ASSISTANT_SYSTEM_PROMPT + "\n\nAvailable modules:\n" + "\n".join(lines)

    async def _answer(self, text: str, context: UserContext) -> ModuleResponse:
        history = []
        if self.conversation is not None:
            history = self.conversation.get_chat_messages(context.user_id, self.history_messages)

        try:
            reply = await asyncio.to_thread(
                self.client.generate_reply, text, history, self._system_prompt()
            )
        except Exception:
            self.logger.error(f"Error generating reply for input: {text!r}", exc_info=True)
            return self.error(UNAVAILABLE_MESSAGE, ErrorCodes.ASSISTANT_UNAVAILABLE)

        return self.success(reply or EMPTY_REPLY_MESSAGE)
