"""
FlowStudio Custom Exceptions

Custom exception classes for error handling throughout the FlowStudio core.
"""


class FlowStudioError(Exception):
    """Base exception for all FlowStudio errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(FlowStudioError):
    """Raised when there's an issue with configuration."""
    pass


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration is missing."""
    pass


# =============================================================================
# DOCUMENT ERRORS
# =============================================================================

class DocumentError(FlowStudioError):
    """Base exception for document store errors."""
    pass


class ValidationError(DocumentError):
    """Raised when a document cannot be parsed or has the wrong shape.

    The parser's own message is carried verbatim in ``message``.
    """
    pass


class NotFoundError(DocumentError):
    """Raised when a requested record does not exist."""
    pass


class DocumentNotFoundError(NotFoundError):
    """Raised when a project document is not found."""

    def __init__(self, project_id: str):
        message = f"Project not found: '{project_id}'"
        super().__init__(message, {"project_id": project_id})


class VersionNotFoundError(NotFoundError):
    """Raised when a version snapshot is not found."""

    def __init__(self, project_id: str, version_number: int):
        message = f"Version {version_number} not found for project '{project_id}'"
        super().__init__(message, {"project_id": project_id, "version_number": version_number})


class ConflictError(DocumentError):
    """Raised when a versioned write loses a race for the next version number."""

    def __init__(self, project_id: str, version_number: int, reason: str = None):
        message = f"Version {version_number} of project '{project_id}' was committed concurrently"
        details = {"project_id": project_id, "version_number": version_number}
        if reason:
            details["reason"] = reason
        super().__init__(message, details)


# =============================================================================
# ASSET ERRORS
# =============================================================================

class AssetError(FlowStudioError):
    """Base exception for asset archiving errors."""
    pass


class DownloadError(AssetError):
    """Raised when a transient asset cannot be fetched or is rejected."""

    def __init__(self, url: str, reason: str):
        message = f"Failed to download '{url}': {reason}"
        super().__init__(message, {"url": url, "reason": reason})


class StorageError(AssetError):
    """Raised when durable storage rejects an upload or record write."""
    pass


# =============================================================================
# PROVIDER ERRORS
# =============================================================================

class ProviderError(FlowStudioError):
    """Raised when a text or image generation provider fails."""

    def __init__(self, provider: str, reason: str):
        message = f"Provider '{provider}' error: {reason}"
        super().__init__(message, {"provider": provider, "reason": reason})
        self.provider = provider
        self.reason = reason


class ResponseParseError(ProviderError):
    """Raised when a provider response cannot be interpreted."""
    pass
