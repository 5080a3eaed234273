"""
API error taxonomy

Every error carries the HTTP status it maps to. Handlers in main.py turn
them into the `{success: false, message, error?}` response shape.
"""

from typing import Optional

from fastapi import HTTPException


class ApiError(HTTPException):
    status_code = 500

    def __init__(self, message: str, error: Optional[str] = None):
        super().__init__(status_code=self.status_code, detail=message)
        self.message = message
        self.error = error


class InvalidInput(ApiError):
    status_code = 400


class NotFound(ApiError):
    status_code = 404


# Duplicates are reported as 400 in this API, not 409
class Conflict(ApiError):
    status_code = 400


class InsufficientStock(ApiError):
    status_code = 400

    def __init__(self, remaining: int, absolute: bool = False):
        # absolute: the requested quantity replaces the line instead of adding to it
        if absolute:
            message = f"Insufficient stock. Only {remaining} item(s) available"
        else:
            message = f"Insufficient stock. Only {remaining} more item(s) available"
        super().__init__(message)
        self.remaining = remaining


class InvalidOtp(ApiError):
    status_code = 400

    def __init__(self, message: str = "Invalid OTP or OTP already used"):
        super().__init__(message)


class OtpExpired(ApiError):
    status_code = 400

    def __init__(self, message: str = "OTP has expired. Please request a new one"):
        super().__init__(message)


class Unauthenticated(ApiError):
    status_code = 401


class Unauthorized(ApiError):
    status_code = 403


class Internal(ApiError):
    status_code = 500
