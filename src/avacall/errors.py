class AvaCallError(Exception):
    """Base class for call-handling errors."""


class SessionExists(AvaCallError):
    def __init__(self, call_sid: str):
        super().__init__(f"Session already registered for call {call_sid}")
        self.call_sid = call_sid


class SessionNotFound(AvaCallError):
    def __init__(self, call_sid: str):
        super().__init__(f"No session for call {call_sid}")
        self.call_sid = call_sid


class IntakeValidationError(AvaCallError):
    """The AI backend submitted an intake payload that can't be persisted.

    Retryable: the message is returned to the AI as the function output so it
    can collect the missing details and submit again.
    """

    retryable = True

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class RealtimeConnectError(AvaCallError):
    """Opening the AI-backend realtime connection failed."""
