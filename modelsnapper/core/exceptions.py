from fastapi import HTTPException
from typing import Dict, Any, Optional


class APIException(HTTPException):
    """Base error rendered as {"status": "error", "message", "code"} by the app handlers."""

    code: str = "ERROR"

    def __init__(
        self,
        status_code: int,
        detail: str,
        code: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Dict[str, Any] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        if code:
            self.code = code
        self.data = data


class NotAuthenticated(APIException):
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=401,
            detail=detail,
            code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"},
        )


class NotAuthorized(APIException):
    def __init__(self, detail: str = "You are not allowed to perform this action", code: str = "FORBIDDEN"):
        super().__init__(status_code=403, detail=detail, code=code)


class NotFound(APIException):
    def __init__(self, detail: str = "Resource not found", code: str = "NOT_FOUND"):
        super().__init__(status_code=404, detail=detail, code=code)


class DuplicateRequest(APIException):
    def __init__(self, detail: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=409, detail=detail, code="DUPLICATE_REQUEST", data=data)


class InvalidTransition(APIException):
    def __init__(self, detail: str, current_status: Optional[str] = None):
        data = {"current_status": current_status} if current_status else None
        super().__init__(status_code=409, detail=detail, code="INVALID_TRANSITION", data=data)
        self.current_status = current_status


class InsufficientCredits(APIException):
    def __init__(self, required: int, available: Optional[int] = None):
        detail = f"Insufficient credits: {required} required"
        if available is not None:
            detail += f", {available} available"
        super().__init__(
            status_code=402,
            detail=detail,
            code="INSUFFICIENT_CREDITS",
            data={"required": required, "available": available},
        )


class UpstreamProviderError(APIException):
    def __init__(self, provider: str, detail: str):
        super().__init__(status_code=502, detail=f"{provider} error: {detail}", code="UPSTREAM_ERROR")
        self.provider = provider


class ValidationError(APIException):
    def __init__(self, detail: str, code: str = "VALIDATION_ERROR"):
        super().__init__(status_code=400, detail=detail, code=code)
