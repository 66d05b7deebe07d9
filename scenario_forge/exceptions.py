"""Custom exceptions for ScenarioForge."""

from typing import Optional


class ScenarioForgeError(Exception):
    """Base exception for all ScenarioForge errors."""

    pass


class ConfigurationError(ScenarioForgeError):
    """Raised when configuration cannot be loaded or is malformed."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class GenerationError(ScenarioForgeError):
    """Raised when the generation backend fails to produce text."""

    def __init__(
        self,
        message: str,
        role: Optional[str] = None,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ):
        self.role = role
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class GenerationTimeoutError(GenerationError):
    """Raised when a generation call exceeds its timeout."""

    def __init__(self, message: str = "Request timeout", role: Optional[str] = None):
        super().__init__(message, role=role, retryable=True)


class PersistenceError(ScenarioForgeError):
    """Raised when a run, turn or event cannot be written."""

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(message)


class RunSetupError(PersistenceError):
    """Raised when a run cannot be created; aborts that conversation only."""

    def __init__(self, message: str):
        super().__init__(message, operation="create_run")


class FactExtractionError(ScenarioForgeError):
    """Raised when the model-assisted memory fallback fails."""

    pass
