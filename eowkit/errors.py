from __future__ import annotations


class EowkitError(Exception):
    """Base class for every error raised by the pipeline and its services."""


class ConfigurationError(EowkitError):
    """Raised for invalid or missing configuration (e.g. reranker artifacts)."""


class ExecutableNotFound(EowkitError):
    """No binary for a service could be resolved."""

    def __init__(self, service: str, tried: list[str] | None = None):
        self.service = service
        self.tried = list(tried or [])
        super().__init__(f"{service}: executable not found (tried: {', '.join(self.tried) or 'nothing'})")


class ServiceStartTimeout(EowkitError):
    """A spawned service never answered its liveness probe."""

    def __init__(self, service: str, attempts: int):
        self.service = service
        self.attempts = attempts
        super().__init__(f"{service} did not become reachable after {attempts} probes")


class ContentFetchFailed(EowkitError):
    """Raised when the raw content of a hit cannot be retrieved."""

    def __init__(self, locator: str, reason: str):
        self.locator = locator
        super().__init__(f"fetch failed for {locator!r}: {reason}")


class RerankFailure(EowkitError):
    """The scoring backend failed; callers fall back to unranked order."""


class ModelPullTimeout(EowkitError):
    """The generation service never reported the pulled model as present."""

    def __init__(self, model: str, attempts: int):
        self.model = model
        self.attempts = attempts
        super().__init__(f"model {model!r} not present after {attempts} checks")


class GenerationRequestFailed(EowkitError):
    """Any non-recoverable failure talking to the generation service."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
