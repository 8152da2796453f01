from __future__ import annotations

from studio_site.utils.ratelimit import RateLimitResult


class AuthError(RuntimeError):
    """
    Security decision failure.

    The orchestrator returns these as values; the HTTP layer raises them from
    dependencies and renders `{"error": public_message}`.
    """

    status_code: int = 401
    public_message: str = "Unauthorized"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.public_message)
        self.reason = reason

    def headers(self) -> dict[str, str]:
        return {}


class RateLimitExceeded(AuthError):
    status_code = 429
    public_message = "Too many requests. Please try again later."

    def __init__(self, result: RateLimitResult) -> None:
        super().__init__(f"retry after {result.retry_after}s")
        self.result = result

    @property
    def retry_after(self) -> int | None:
        return self.result.retry_after

    def headers(self) -> dict[str, str]:
        return self.result.headers()


class InvalidCredentials(AuthError):
    # Same message for unknown user and wrong password.
    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": 'Basic realm="Admin", charset="UTF-8"'}


class SessionNotFound(AuthError):
    pass


class SessionExpired(AuthError):
    pass


class SessionBindingMismatch(AuthError):
    pass


class CsrfValidationFailure(AuthError):
    status_code = 403
    public_message = "CSRF validation failed"
