"""
Data model shared by the dispatcher, the module registry and modules.

- UserContext: immutable snapshot of the authenticated caller
- ModuleResponse: result of handling one command (metadata is annotated
  by the dispatcher before it reaches the caller)
- SuggestedAction / ModuleUpdate / ModuleDescriptor
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pytz


@dataclass(frozen=True)
class UserContext:
    """
    Authenticated caller identity, built once per request by the identity
    provider and passed read-only into every module call.

    Access and refresh tokens are opaque strings; the dispatcher never
    inspects them.
    """
    user_id: str
    email: str = ""
    name: str = ""
    provider: str = ""  # "google" or "microsoft"
    access_token: str = ""
    refresh_token: str = ""
    token_expiry: Optional[datetime] = None
    scopes: Tuple[str, ...] = ()
    additional_claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def provider_key(self) -> str:
        return self.provider.strip().lower()

    @property
    def is_token_expired(self) -> bool:
        """True once the expiry instant has passed. No expiry means non-expiring."""
        if self.token_expiry is None:
            return False
        expiry = self.token_expiry
        if expiry.tzinfo is None:
            expiry = pytz.utc.localize(expiry)
        return datetime.now(pytz.utc) >= expiry


@dataclass
class SuggestedAction:
    """A follow-up the UI can offer as a one-click command."""
    id: str
    label: str
    command: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "command": self.command,
            "parameters": dict(self.parameters),
        }


@dataclass
class ModuleResponse:
    """Result of one module invocation."""
    success: bool
    message: str = ""
    data: Any = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    suggested_actions: List[SuggestedAction] = field(default_factory=list)
    requires_follow_up: bool = False
    follow_up_prompt: Optional[str] = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "ModuleResponse":
        return cls(success=True, message=message, data=data)

    @classmethod
    def error(cls, message: str, error_code: Optional[str] = None) -> "ModuleResponse":
        return cls(success=False, message=message, error_code=error_code)

    def ask(self, prompt: Optional[str] = None) -> "ModuleResponse":
        """Mark this response as waiting for the user's answer."""
        self.requires_follow_up = True
        self.follow_up_prompt = prompt or self.message
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Wire form for an API layer (camelCase keys)."""
        return {
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "errorCode": self.error_code,
            "metadata": dict(self.metadata),
            "suggestedActions": [a.to_dict() for a in self.suggested_actions],
            "requiresFollowUp": self.requires_follow_up,
            "followUpPrompt": self.follow_up_prompt,
        }


@dataclass
class ModuleUpdate:
    """Asynchronous event a module pushes to the user's active sessions."""
    module_id: str
    type: str  # "NewEmail", "UpcomingEvent", "status", ...
    title: str
    message: str
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(pytz.utc))
    priority: str = "normal"  # low, normal, high, urgent
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "moduleId": self.module_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "priority": self.priority,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ModuleDescriptor:
    """Read-only summary of a registered module."""
    id: str
    name: str
    description: str
    supported_commands: Tuple[str, ...]
    priority: int

    @classmethod
    def from_module(cls, module) -> "ModuleDescriptor":
        return cls(
            id=module.get_id(),
            name=module.get_name(),
            description=module.get_description(),
            supported_commands=tuple(module.get_supported_commands()),
            priority=module.get_priority(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "supportedCommands": list(self.supported_commands),
            "priority": self.priority,
        }
