"""
Command Dispatcher - routes natural-language input to capability modules.

Per command:
    preference check -> auto-selection (concurrent scoring) ->
    low-confidence fallback | invoke -> fallback-on-failure -> return

Handles:
- Honoring a preferred module when it clears a minimal viability bar
- Fan-out/fan-in confidence scoring with per-module failure isolation
- Exactly one fallback attempt per command (never a chain)
- Annotating every returned response with selection metadata
"""

import asyncio
from typing import List, Optional, Tuple

from core.errors import DispatchError, ErrorCodes
from core.models import ModuleDescriptor, ModuleResponse, UserContext
from core.scoring import clamp_confidence
from core.settings import DispatchSettings
from modules.registry import ModuleRegistry
from utils.logger import get_logger

NO_MATCH_MESSAGE = (
    "I'm not sure how to help with that. Could you please rephrase your "
    "request or try a different command?"
)


class CommandDispatcher:
    """
    Orchestrates module selection, invocation and fallback for one command
    at a time. Holds no per-command state; concurrent calls are independent.
    """

    def __init__(self, registry: Optional[ModuleRegistry] = None,
                 settings: Optional[DispatchSettings] = None):
        """
        Initialize dispatcher.

        Args:
            registry: ModuleRegistry shared with modules that need it
            settings: Thresholds and fallback policy (defaults if omitted)
        """
        self.registry = registry if registry is not None else ModuleRegistry()
        self.settings = settings or DispatchSettings()
        self.logger = get_logger("dispatcher")

    # ------------------------------------------------------------------
    # Registration / introspection
    # ------------------------------------------------------------------

    def register_module(self, module) -> None:
        self.registry.register(module)

    def unregister_module(self, module_id: str) -> None:
        self.registry.unregister(module_id)

    def list_modules(self) -> List[ModuleDescriptor]:
        return [ModuleDescriptor.from_module(m) for m in self.registry.list()]

    async def find_best_module(self, text: str,
                               context: UserContext) -> Tuple[Optional[ModuleDescriptor], float]:
        """
        Which module would auto-selection pick? Performs no invocation.

        Returns:
            (descriptor or None, confidence)
        """
        module, confidence = await self._select_best(text, context)
        if module is None:
            return None, 0.0
        return ModuleDescriptor.from_module(module), confidence

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def process_command(self, text: str, context: UserContext,
                              preferred_module_id: Optional[str] = None) -> ModuleResponse:
        """
        Route a command to the best module and return its response.

        Args:
            text: Raw user input
            context: Authenticated user context
            preferred_module_id: Module the caller would like to use (optional)

        Returns:
            ModuleResponse with metadata keys moduleId, moduleName,
            confidence, isFallback and preferredModule

        Raises:
            DispatchError: the selected module raised and the fallback was
                unavailable or raised too
        """
        preferred_label = preferred_module_id or "auto"
        self.logger.info(
            f"Processing command for user {context.user_id} "
            f"(preferred module: {preferred_label}): {text!r}"
        )

        module, confidence = await self._resolve_preferred(text, context, preferred_module_id)
        if module is None:
            module, confidence = await self._select_best(text, context)

        if module is None or confidence < self.settings.auto_min_confidence:
            return await self._handle_low_confidence(text, context, confidence, preferred_label)

        self.logger.info(f"Selected module: {module.get_id()} with confidence {confidence:.2f}")

        try:
            response = await self._invoke(module, text, context)
        except Exception as e:
            self.logger.error(f"Error in module {module.get_id()}, attempting fallback", exc_info=True)
            return await self._fallback_after_exception(module, e, text, context, preferred_label)

        if self.settings.fallback_policy.should_fallback(response):
            fallback_response = await self._fallback_after_refusal(
                module, response, text, context, preferred_label
            )
            if fallback_response is not None:
                return fallback_response

        return self._annotate(response, module, confidence, preferred_label, is_fallback=False)

    async def _resolve_preferred(self, text: str, context: UserContext,
                                 preferred_module_id: Optional[str]):
        """Return (module, confidence) for a usable preference, else (None, 0.0)."""
        if not preferred_module_id:
            return None, 0.0

        module = self.registry.find_by_id(preferred_module_id)
        if module is None:
            self.logger.warning(
                f"Preferred module {preferred_module_id} not found, falling back to auto-selection"
            )
            return None, 0.0

        try:
            confidence = clamp_confidence(await module.can_handle(text, context))
        except Exception:
            self.logger.warning(
                f"Error checking preferred module {module.get_id()}, falling back to auto-selection",
                exc_info=True
            )
            return None, 0.0

        self.logger.info(f"Preferred module {module.get_id()} confidence: {confidence:.2f}")
        if confidence < self.settings.preferred_min_confidence:
            self.logger.warning(
                f"Preferred module {module.get_id()} has very low confidence "
                f"({confidence:.2f}), falling back to auto-selection"
            )
            return None, 0.0
        return module, confidence

    async def _score(self, module, text: str, context: UserContext) -> float:
        """Score one module; any failure counts as 0 and is only logged."""
        try:
            return clamp_confidence(await module.can_handle(text, context))
        except Exception:
            self.logger.warning(
                f"Error checking if module {module.get_id()} can handle command",
                exc_info=True
            )
            return 0.0

    async def _select_best(self, text: str, context: UserContext):
        """
        Score every registered module concurrently and pick the best.

        Highest score wins, ties go to higher priority; only scores > 0 count.
        """
        modules = self.registry.list()
        if not modules:
            return None, 0.0

        scores = await asyncio.gather(*(self._score(m, text, context) for m in modules))

        candidates = [(m, s) for m, s in zip(modules, scores) if s > 0]
        if not candidates:
            return None, 0.0

        best_module, best_score = max(
            candidates, key=lambda pair: (pair[1], pair[0].get_priority())
        )
        self.logger.debug(
            "Scores: " + ", ".join(f"{m.get_id()}={s:.2f}" for m, s in zip(modules, scores))
        )
        return best_module, best_score

    async def _invoke(self, module, text: str, context: UserContext) -> ModuleResponse:
        response = await module.handle(text, context)
        if not isinstance(response, ModuleResponse):
            raise TypeError(
                f"Module {module.get_id()} returned {type(response).__name__}, expected ModuleResponse"
            )
        return response

    def _fallback_module(self):
        return self.registry.find_by_id(self.settings.fallback_module_id)

    async def _handle_low_confidence(self, text: str, context: UserContext,
                                     confidence: float, preferred_label: str) -> ModuleResponse:
        self.logger.info(
            f"No suitable module found (confidence: {confidence:.2f}), attempting fallback"
        )
        fallback = self._fallback_module()
        if fallback is None:
            response = ModuleResponse.error(NO_MATCH_MESSAGE, ErrorCodes.NO_MATCHING_MODULE)
            response.metadata.update({
                "moduleId": "none",
                "moduleName": "none",
                "confidence": confidence,
                "isFallback": False,
                "preferredModule": preferred_label,
            })
            return response

        try:
            response = await self._invoke(fallback, text, context)
        except Exception as e:
            self.logger.error(f"Fallback module {fallback.get_id()} failed", exc_info=True)
            raise DispatchError(
                f"Fallback module {fallback.get_id()} failed: {e}",
                module_id=fallback.get_id(),
                fallback_module_id=fallback.get_id(),
                preferred_module=preferred_label,
            ) from e

        return self._annotate(
            response, fallback, self.settings.fallback_confidence, preferred_label,
            is_fallback=True, originalConfidence=confidence,
        )

    def _distinct_fallback(self, module):
        fallback = self._fallback_module()
        if fallback is None or fallback.get_id().lower() == module.get_id().lower():
            return None
        return fallback

    async def _fallback_after_exception(self, module, error: Exception, text: str,
                                        context: UserContext, preferred_label: str) -> ModuleResponse:
        fallback = self._distinct_fallback(module)
        if fallback is None:
            raise DispatchError(
                f"Module {module.get_id()} failed and no fallback is available: {error}",
                module_id=module.get_id(),
                preferred_module=preferred_label,
            ) from error

        try:
            response = await self._invoke(fallback, text, context)
        except Exception as fallback_error:
            self.logger.error(f"Fallback to {fallback.get_id()} also failed", exc_info=True)
            raise DispatchError(
                f"Module {module.get_id()} failed ({error}); "
                f"fallback {fallback.get_id()} failed ({fallback_error})",
                module_id=module.get_id(),
                fallback_module_id=fallback.get_id(),
                preferred_module=preferred_label,
            ) from error

        return self._annotate(
            response, fallback, self.settings.fallback_confidence, preferred_label,
            is_fallback=True, originalModule=module.get_id(), originalError=str(error),
        )

    async def _fallback_after_refusal(self, module, failed: ModuleResponse, text: str,
                                      context: UserContext,
                                      preferred_label: str) -> Optional[ModuleResponse]:
        """One fallback attempt for a "could not handle" response; None keeps the original."""
        fallback = self._distinct_fallback(module)
        if fallback is None:
            return None

        self.logger.info(
            f"Module {module.get_id()} could not handle command "
            f"({failed.error_code or 'no code'}), attempting fallback"
        )
        try:
            response = await self._invoke(fallback, text, context)
        except Exception:
            self.logger.error(
                f"Fallback to {fallback.get_id()} failed, returning original response",
                exc_info=True
            )
            return None

        return self._annotate(
            response, fallback, self.settings.fallback_confidence, preferred_label,
            is_fallback=True, originalModule=module.get_id(), originalError=failed.message,
        )

    def _annotate(self, response: ModuleResponse, module, confidence: float,
                  preferred_label: str, is_fallback: bool, **extra) -> ModuleResponse:
        response.metadata["moduleId"] = module.get_id()
        response.metadata["moduleName"] = module.get_name()
        response.metadata["confidence"] = confidence
        response.metadata["isFallback"] = is_fallback
        response.metadata["preferredModule"] = preferred_label
        response.metadata.update(extra)
        return response
