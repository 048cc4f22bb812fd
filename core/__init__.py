"""
Core infrastructure for the command assistant.

This package contains the shared services used by all modules:
- Command dispatcher and fallback policy
- Data model and error types
- Conversation history (MongoDB or in-memory)
- OpenAI client wrapper
- Mail and calendar provider clients
- Update streaming
"""

from .database import init_database
from .dispatcher import CommandDispatcher
from .errors import DispatchError, ErrorCodes
from .history import CommandHistoryStore, ConversationContextService, InMemoryCommandHistory
from .models import ModuleDescriptor, ModuleResponse, ModuleUpdate, SuggestedAction, UserContext
from .openai_client import OpenAIClient
from .settings import DispatchSettings, load_config
from .updates import UpdateStream

__all__ = [
    "init_database",
    "CommandDispatcher",
    "DispatchError",
    "ErrorCodes",
    "CommandHistoryStore",
    "ConversationContextService",
    "InMemoryCommandHistory",
    "ModuleDescriptor",
    "ModuleResponse",
    "ModuleUpdate",
    "SuggestedAction",
    "UserContext",
    "OpenAIClient",
    "DispatchSettings",
    "load_config",
    "UpdateStream",
]
