"""Custom exceptions for the cluster agent reconciler."""


class ClusterAgentError(Exception):
    """Base exception for all cluster agent errors."""

    def __init__(self, message: str, details: str | None = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details, such as captured command output
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ConfigurationError(ClusterAgentError):
    """Exception raised for invalid settings."""

    pass


class KubernetesError(ClusterAgentError):
    """Exception raised for Kubernetes API errors."""

    pass


class KubectlError(ClusterAgentError):
    """Exception raised when a kubectl invocation fails.

    The combined stdout/stderr of the command is kept on ``output`` so
    callers can inspect it (for example to recognise "not found").
    """

    def __init__(self, message: str, output: str = "", returncode: int | None = None):
        self.output = output
        self.returncode = returncode
        super().__init__(message, output or None)


class ServerNotReadyError(ClusterAgentError):
    """Raised while the server URL the agent connects back to is not configured.

    This is recoverable: the cluster has already been re-queued.
    """

    pass


class RenderError(ClusterAgentError):
    """Exception raised when the agent manifest cannot be rendered."""

    pass


class CredentialError(ClusterAgentError):
    """Exception raised when system account or token issuance fails."""

    pass


class CompositeError(ClusterAgentError):
    """An error wrapping an underlying failure together with command output."""

    def __init__(self, message: str, error: Exception, output: str = ""):
        self.error = error
        self.output = output
        # Raw output of a wrapped error may hold secrets; only its message is kept
        cause = error.message if isinstance(error, ClusterAgentError) else str(error)
        details = "; ".join(part for part in (cause, output) if part)
        super().__init__(message, details or None)


class ApplyError(CompositeError):
    """Raised after every attempt to apply the agent manifest has failed."""

    pass


class DeleteError(CompositeError):
    """Raised when removing a companion resource fails for a reason other than not found."""

    pass


class StoreError(ClusterAgentError):
    """Exception raised for cluster store read/write errors."""

    pass


class PersistenceError(StoreError):
    """Raised when the reconciled cluster object cannot be written back."""

    pass


class ConflictError(PersistenceError):
    """Raised when a write-back races another writer of the same cluster."""

    pass
