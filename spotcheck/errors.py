"""Domain error taxonomy shared by the engine and the HTTP layer."""

from typing import Optional


class SpotCheckError(Exception):
    status_code = 400
    code = "bad_request"


class AuthenticationFailure(SpotCheckError):
    """Bad or missing credentials. Never carries detail back to the caller."""

    status_code = 401
    code = "unauthorized"


class ValidationFailure(SpotCheckError):
    status_code = 422
    code = "invalid_request"

    def __init__(self, field: str, detail: str):
        super().__init__(f"{field}: {detail}")
        self.field = field
        self.detail = detail


class ConflictFailure(SpotCheckError):
    """The target was already handled (resolved request, redeemed code)."""

    status_code = 409

    def __init__(self, code: str, status_code: Optional[int] = None):
        super().__init__(code)
        self.code = code
        if status_code is not None:
            self.status_code = status_code


class NotFound(SpotCheckError):
    status_code = 404
    code = "not_found"

    def __init__(self, code: str = "not_found"):
        super().__init__(code)
        self.code = code


class ServiceMisconfigured(SpotCheckError):
    """A required server-side setting is missing (e.g. the session signing secret)."""

    status_code = 500

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class BadRequest(SpotCheckError):
    def __init__(self, code: str = "bad_request"):
        super().__init__(code)
        self.code = code
