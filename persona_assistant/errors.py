"""Error types raised by the completion pipeline."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for failures that terminate a chat turn."""

    status_code = 500


class ConfigurationError(OrchestratorError):
    """Missing credentials or an unreachable store."""

    status_code = 500


class InvalidTurnError(OrchestratorError):
    """Empty or malformed message list. No upstream call is attempted."""

    status_code = 400


class UpstreamTransientError(OrchestratorError):
    """Every candidate failed with a retryable outcome, or none could be dispatched."""

    status_code = 502


class UpstreamRejectedError(OrchestratorError):
    """A candidate returned a non-retryable error; remaining candidates are not tried."""

    status_code = 502

    def __init__(self, message: str, status: int, detail: object = None) -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail
