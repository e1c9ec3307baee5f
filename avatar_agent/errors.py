# avatar_agent/errors.py


class AvatarAgentError(Exception):
    """Base for failures that end in a one-line reply to the user."""

    def user_message(self) -> str:
        return str(self) or self.__class__.__name__


class ValidationError(AvatarAgentError):
    pass


class NotConfigured(AvatarAgentError):
    pass


class NotFound(AvatarAgentError):
    pass


class ExternalServiceError(AvatarAgentError):
    def __init__(self, service: str, detail: str, status_code: int | None = None):
        self.service = service
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{service} request failed: {detail}")


class CatalogUnavailable(ExternalServiceError):
    def __init__(self, detail: str):
        super().__init__("catalog", detail)


class OwnershipViolation(AvatarAgentError):
    pass
