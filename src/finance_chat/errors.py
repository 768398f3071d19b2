"""Error taxonomy shared by the stores, the orchestrator and the HTTP layer."""
from __future__ import annotations


class FinanceChatError(Exception):
    """Base class. ``status_code`` is what the HTTP layer answers with."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class Unauthorized(FinanceChatError):
    status_code = 401


class BadCredential(Unauthorized):
    status_code = 401


class Forbidden(FinanceChatError):
    status_code = 403


class NotFound(FinanceChatError):
    status_code = 404


class NotFoundOrForbidden(NotFound, Forbidden):
    """Owner-scoped lookup found nothing; a foreign row looks the same as a missing one."""

    status_code = 404


class DuplicateEmail(FinanceChatError):
    status_code = 400


class ConfigurationMissing(FinanceChatError):
    status_code = 400


class UpstreamUnavailable(FinanceChatError):
    status_code = 502


class MalformedUpstreamOutput(FinanceChatError):
    status_code = 502


class InvalidInput(FinanceChatError, ValueError):
    """Caller-supplied value rejected by a store or the orchestrator."""

    status_code = 400
