"""Exceptions raised by remediator components."""


class RemediatorError(Exception):
    """Base class for remediator errors."""


class ConfigurationError(RemediatorError):
    """Invalid configuration value or file."""


class DefinitionStoreError(RemediatorError):
    """A workflow definition could not be read or written."""

    def __init__(self, workflow_id: str, message: str):
        self.workflow_id = workflow_id
        super().__init__(f"{workflow_id}: {message}")


class DefinitionNotFoundError(DefinitionStoreError):
    """No definition exists for the requested workflow."""

    def __init__(self, workflow_id: str):
        super().__init__(workflow_id, "workflow definition not found")


class ModelServiceError(RemediatorError):
    """The external model service failed or returned unusable output."""


class IterationConflictError(RemediatorError):
    """A remediation loop is already running for this key."""
