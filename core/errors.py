"""
Error codes and exceptions shared by the dispatcher and modules.
"""

from typing import Optional


class ErrorCodes:
    """Error codes carried on ModuleResponse.error_code."""
    NO_MATCHING_MODULE = "NO_MATCHING_MODULE"
    PROCESSING_ERROR = "PROCESSING_ERROR"

    # Reserved "could not handle" codes (default fallback taxonomy)
    NOT_SUPPORTED = "NOT_SUPPORTED"
    INVALID_COMMAND = "INVALID_COMMAND"
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
    CANNOT_HANDLE = "CANNOT_HANDLE"
    NOT_UNDERSTOOD = "NOT_UNDERSTOOD"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"

    # Domain failures that never trigger a fallback
    NOT_CONFIGURED = "NOT_CONFIGURED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    UNSUPPORTED_PROVIDER = "UNSUPPORTED_PROVIDER"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    MISSING_ARGUMENT = "MISSING_ARGUMENT"
    ASSISTANT_UNAVAILABLE = "ASSISTANT_UNAVAILABLE"


GENERIC_PROCESSING_MESSAGE = (
    "An error occurred while processing your request. Please try again."
)


class DispatchError(Exception):
    """
    Fatal dispatch failure: the selected module raised and the one-shot
    fallback was unavailable or raised as well.

    The original exception is chained as __cause__. Only `user_message`
    is ever shown to the end user.
    """

    code = ErrorCodes.PROCESSING_ERROR

    def __init__(
        self,
        message: str,
        module_id: Optional[str] = None,
        fallback_module_id: Optional[str] = None,
        preferred_module: Optional[str] = None,
        user_message: str = GENERIC_PROCESSING_MESSAGE
    ):
        super().__init__(message)
        self.module_id = module_id
        self.fallback_module_id = fallback_module_id
        self.preferred_module = preferred_module or "auto"
        self.user_message = user_message

    def to_response(self):
        """Translate into the generic PROCESSING_ERROR response for the caller."""
        from core.models import ModuleResponse

        response = ModuleResponse.error(self.user_message, self.code)
        response.metadata.update({
            "moduleId": self.module_id or "none",
            "moduleName": self.module_id or "none",
            "confidence": 0.0,
            "isFallback": self.fallback_module_id is not None,
            "preferredModule": self.preferred_module,
        })
        return response


class ProviderApiError(Exception):
    """A mail or calendar provider API call failed."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
