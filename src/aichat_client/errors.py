"""Typed error taxonomy for chat requests.

Each :class:`ChatError` carries the HTTP status the server answers with, so
callers choose a response by type instead of inspecting message text.
"""


class ChatError(Exception):
    """Base class for failures surfaced to the caller of an exchange."""

    status_code = 500
    default_message = "An error occurred while processing your request"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ── Configuration ────────────────────────────────────────────────


class ConfigurationError(ChatError):
    status_code = 500
    default_message = "Server configuration is invalid"


class MissingCredentialError(ConfigurationError):
    default_message = "NANOGPT_API_KEY is not configured. Please add it to your .env file."


# ── Validation ───────────────────────────────────────────────────


class ValidationError(ChatError):
    status_code = 400
    default_message = "Invalid request"


class EmptyMessagesError(ValidationError):
    default_message = "Messages array is required"


class InvalidModelIdError(ValidationError):
    default_message = "Malformed model id"


# ── Transport ────────────────────────────────────────────────────


class TransportError(ChatError):
    status_code = 502
    default_message = "The model provider request failed"


class AuthenticationError(TransportError):
    status_code = 401
    default_message = "Invalid API key configuration"


class RateLimitError(TransportError):
    status_code = 429
    default_message = "Rate limit exceeded. Please try again later."


class MalformedStreamError(TransportError):
    default_message = "The model provider sent a malformed stream"


class StreamTimeoutError(TransportError):
    status_code = 504
    default_message = "The model provider did not finish in time"


# ── Registry ─────────────────────────────────────────────────────


class EmptyRegistryError(ValueError):
    """Raised when a default model is requested from an empty collection."""
