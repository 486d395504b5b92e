"""
Error taxonomy shared by the store, the services and the HTTP layer.

- ValidationError: the caller sent something we can't use (400)
- NotFoundError: unknown query id (404)
- InfrastructureError: a required upstream/persistence call failed (500)
- AIUnavailableError: the LLM gateway is not configured or failed; never fatal
  for create/update
"""


class SkyCastError(Exception):
    """Base class for application errors."""
    pass


class ValidationError(SkyCastError):
    """Bad date range, unresolved location, missing or invalid field."""
    pass


class UnsupportedFormatError(ValidationError):
    """Export format outside json/csv/xml/pdf/markdown."""
    pass


class NotFoundError(SkyCastError):
    """Raised when a weather query id does not exist."""
    pass


class InfrastructureError(SkyCastError):
    """Required external dependency unreachable or misbehaving."""
    pass


class AIUnavailableError(SkyCastError):
    """LLM gateway missing a credential, unreachable, or returned an error."""
    pass
