"""
Application error type

Every service raises ApiError with an HTTP status code. The FastAPI
handler registered in main.py turns it into a JSON error response.
"""
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class ApiError(Exception):
    """Error carrying a message and the HTTP status to answer with."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "error",
            "message": self.message,
            "status_code": self.status_code,
        }

    def __repr__(self) -> str:
        return f"ApiError(status_code={self.status_code}, message={self.message!r})"


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the ApiError handler to the application"""
    app.add_exception_handler(ApiError, api_error_handler)
