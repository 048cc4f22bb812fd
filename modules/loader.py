"""
Module loading from configuration.

Builds every module enabled in config.yaml, initializes it and registers it
with the dispatcher. Enable/disable filtering lives here, never in the
dispatcher.
"""

from typing import Dict, List

from utils.logger import get_logger

logger = get_logger("loader")


def available_modules() -> Dict[str, type]:
    """Map of module ids to classes."""
    from .calendar import CalendarModule
    from .email import EmailModule
    from .general import GeneralAssistantModule
    # Add more mappings here

    return {
        "email": EmailModule,
        "calendar": CalendarModule,
        "general": GeneralAssistantModule,
    }


async def register_enabled_modules(dispatcher, config: Dict, timezone: str = "America/Los_Angeles",
                                   conversation=None, openai_client=None) -> List[object]:
    """
    Load all enabled modules from configuration into the dispatcher.

    Args:
        dispatcher: CommandDispatcher (its registry is shared with the general assistant)
        config: Configuration dict from config.yaml
        timezone: Timezone string for date calculations
        conversation: ConversationContextService for the general assistant
        openai_client: Optional preconfigured OpenAIClient for the general assistant

    Returns:
        Registered module instances
    """
    loaded = []
    for module_id, module_class in available_modules().items():
        # a bare "email:" key in YAML loads as None
        module_config: Dict = (config.get("modules") or {}).get(module_id) or {}

        if not module_config.get("enabled", False):
            logger.debug(f"Skipping disabled module: {module_id}")
            continue

        try:
            logger.info(f"Loading module: {module_id}...")
            if module_id == "general":
                module = module_class(
                    module_config,
                    timezone=timezone,
                    registry=dispatcher.registry,
                    conversation=conversation,
                    openai_client=openai_client,
                )
            else:
                module = module_class(module_config, timezone=timezone)

            await module.initialize()
            dispatcher.register_module(module)
            loaded.append(module)
            logger.info(f"Loaded module: {module.get_name()}")

        except Exception as e:
            logger.error(f"Failed to load module {module_id}: {e}", exc_info=True)

    return loaded
