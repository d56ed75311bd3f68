"""
Exceptions raised by avdeploy components.
"""

from typing import Optional


class AvdDeployError(Exception):
    """Base class for all avdeploy errors."""


class ConfigurationError(AvdDeployError):
    """Configuration or operator input is missing or invalid."""


class InvalidStorageAccountError(ConfigurationError, ValueError):
    """Storage account input is neither a bare name nor a file endpoint FQDN."""


class ResourceNotFoundError(AvdDeployError):
    """A resource the command depends on does not exist."""


class AzureCliError(AvdDeployError):
    """The Azure CLI is missing or a command returned a non-zero exit code."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class GraphApiError(AvdDeployError):
    """Microsoft Graph returned an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
