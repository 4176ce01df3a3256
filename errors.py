from typing import List, Optional

from fastapi import HTTPException


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(status_code=401, detail=detail)


class Forbidden(HTTPException):
    def __init__(self, detail: str = "Forbidden - admin only"):
        super().__init__(status_code=403, detail=detail)


class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=404, detail=detail)


class ValidationError(HTTPException):
    def __init__(self, detail: str = "Validation error", details: Optional[List[str]] = None):
        super().__init__(status_code=400, detail=detail)
        self.details = details


class Conflict(HTTPException):
    def __init__(self, detail: str = "Conflict", **extra):
        super().__init__(status_code=409, detail=detail)
        self.extra = extra


class UpstreamError(HTTPException):
    def __init__(self, detail: str = "Payment gateway error"):
        super().__init__(status_code=502, detail=detail)
