from __future__ import annotations

LOGIN_HINT = "Please log in again with 'mission-control auth login'."


class AuthError(RuntimeError):
    pass


class NotAuthenticated(AuthError):
    def __init__(self, message: str = f"Not authenticated. {LOGIN_HINT}") -> None:
        super().__init__(message)


class StorageError(AuthError):
    pass


class LoginError(AuthError):
    pass


class AuthDenied(LoginError):
    def __init__(self, error: str, description: str | None = None) -> None:
        message = f"Authorization denied: {error}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)
        self.error = error
        self.description = description


class StateMismatch(LoginError):
    def __init__(self) -> None:
        super().__init__("Invalid state parameter in authorization callback; login aborted.")


class MissingAuthorizationCode(LoginError):
    def __init__(self) -> None:
        super().__init__("No authorization code received in callback.")


class LoginTimedOut(LoginError):
    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Login timed out after {timeout_seconds:g} seconds.")
        self.timeout_seconds = timeout_seconds


class LoginCanceled(LoginError):
    def __init__(self) -> None:
        super().__init__("Login canceled.")


class TokenRequestError(AuthError):
    action = "Token request"

    def __init__(self, status_code: int | None, body: str) -> None:
        if status_code is None:
            message = f"{self.action} failed: {body}"
        else:
            message = f"{self.action} failed with status {status_code}: {body}"
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenExchangeFailed(TokenRequestError):
    action = "Token exchange"


class TokenRefreshFailed(TokenRequestError):
    action = "Token refresh"

    def __str__(self) -> str:
        return f"{super().__str__()} {LOGIN_HINT}"
