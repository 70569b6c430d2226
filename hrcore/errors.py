from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    kind = "ApiError"
    default_status_code = 400

    def __init__(
        self,
        status_code: int | None = None,
        code: str = "API_ERROR",
        message: str = "Request failed.",
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code if status_code is not None else self.default_status_code
        self.code = code
        self.message = message
        self.details = details or {}


class UnauthorizedError(ApiError):
    kind = "Unauthorized"
    default_status_code = 403


class ValidationError(ApiError):
    kind = "ValidationError"
    default_status_code = 422


class ConflictError(ApiError):
    kind = "ConflictError"
    default_status_code = 409


class NotFoundError(ApiError):
    kind = "NotFoundError"
    default_status_code = 404


class OutOfGeofenceError(ApiError):
    kind = "OutOfGeofence"
    default_status_code = 400

    def __init__(self, *, distance_m: float, max_distance_m: float):
        super().__init__(
            code="OUT_OF_GEOFENCE",
            message="You must be within the office area to mark attendance.",
            details={
                "distance_m": round(distance_m, 2),
                "max_distance_m": max_distance_m,
            },
        )
        self.distance_m = distance_m
        self.max_distance_m = max_distance_m


class DependencyError(ApiError):
    kind = "DependencyError"
    default_status_code = 503

    def __init__(self, code: str = "DEPENDENCY_UNAVAILABLE", message: str = "A backing service is unavailable."):
        super().__init__(code=code, message=message, details={"retryable": True})


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    kind: str | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    if kind:
        payload["error"]["kind"] = kind
    if details:
        payload["error"].update(details)
    return JSONResponse(status_code=status_code, content=payload)
