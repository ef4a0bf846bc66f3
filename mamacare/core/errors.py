class MamaCareError(Exception):
    """Base for failures reported to callers as ``{"error": ...}``."""

    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(MamaCareError):
    http_status = 500


class InvalidRequestError(MamaCareError):
    http_status = 400


class ConversationNotFoundError(MamaCareError):
    http_status = 404


class PersistenceError(MamaCareError):
    http_status = 500


class UpstreamUnavailableError(MamaCareError):
    """The upstream service could not be reached."""

    http_status = 502


class UpstreamStatusError(MamaCareError):
    """The upstream service answered with a non-success status."""

    http_status = 502

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyReplyError(MamaCareError):
    http_status = 502


class AnalysisParseError(MamaCareError):
    http_status = 502


class IdentityError(MamaCareError):
    """Raised by identity providers (bad credentials, unknown account, ...)."""

    http_status = 401
