class ManifestNotFoundError(Exception):
    """Raised when no serverless.yml is found in the current or parent directories."""


class ConfigurationError(ValueError):
    """Raised when the manifest or its custom.newRelic block is invalid."""


class LookupFailure(Exception):  # noqa: N818
    """Raised when a layer ARN or log destination ARN cannot be resolved."""


class ProviderCallError(Exception):
    """Raised when an AWS API call fails."""

    def __init__(self, operation: str, message: str, code: str | None = None):
        self.operation = operation
        self.message = message
        self.code = code
        super().__init__(f"{operation} failed: {message}")
