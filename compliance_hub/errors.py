from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class NotOwnedError(ApiError):
    """Resource is absent or belongs to another factory.

    Both cases surface identically so callers cannot probe other tenants.
    """

    def __init__(self, message: str = "resource not found or does not belong to your factory") -> None:
        super().__init__(
            code="NOT_OWNED",
            message=message,
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
        )


class NotFoundError(ApiError):
    def __init__(self, *, code: str = "NOT_FOUND", message: str = "resource not found") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="validation",
            retryable=False,
            http_status=404,
        )


class ValidationFailedError(ApiError):
    def __init__(self, *, code: str = "REQ_VALIDATION_FAILED", message: str = "invalid payload") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="business_rule",
            retryable=False,
            http_status=400,
        )


class IllegalRoleForActionError(ApiError):
    def __init__(self, message: str = "role not permitted for this action") -> None:
        super().__init__(
            code="AUTH_FORBIDDEN",
            message=message,
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
        )


def unauthorized(message: str) -> ApiError:
    return ApiError(
        code="AUTH_UNAUTHORIZED",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=401,
    )
