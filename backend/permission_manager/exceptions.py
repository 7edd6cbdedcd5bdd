from typing import Any, Dict, Optional
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application error; handlers render it as the standard error envelope."""

    def __init__(self, message: str, *, status_code: int = 400, code: str = "APP_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}


class InvalidIdentityError(AppException):
    def __init__(self, message: str, *, identity: str | None = None) -> None:
        super().__init__(message, status_code=422, code="INVALID_IDENTITY", details={"identity": identity} if identity is not None else None)


class ResourceNotFoundError(AppException):
    def __init__(self, kind: str, name: str, namespace: str | None = None) -> None:
        where = f"{namespace}/{name}" if namespace else name
        details: Dict[str, Any] = {"kind": kind, "name": name}
        if namespace:
            details["namespace"] = namespace
        super().__init__(f"{kind} {where} not found", status_code=404, code="NOT_FOUND", details=details)


class ResourceConflictError(AppException):
    def __init__(self, kind: str, name: str, namespace: str | None = None) -> None:
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where} already exists", status_code=409, code="CONFLICT", details={"kind": kind, "name": name})


class ResourceStoreError(AppException):
    """The Kubernetes API rejected the call, was unreachable or timed out."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status_code=502, code="RESOURCE_STORE_ERROR", details=details)


class SigningBackendError(AppException):
    """Key generation, CSR construction or CA signing failed."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status_code=502, code="SIGNING_BACKEND_ERROR", details=details)


class CAMaterialError(AppException):
    """CA certificate or key missing/unreadable on disk."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message, status_code=500, code="CA_MATERIAL_ERROR", details={"path": path} if path else None)


def _build_error_payload(
    *,
    message: str,
    status_code: int,
    code: str = "APP_ERROR",
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    rid = request_id or str(uuid.uuid4())
    payload: Dict[str, Any] = {
        "success": False,
        "error": {
            "message": message,
            "code": code,
            **({"details": details} if details else {}),
        },
        "request_id": rid,
        "status_code": status_code,
    }
    return payload


def register_exception_handlers(app: FastAPI) -> None:
    """Register global handlers so every failure becomes a request-scoped error response."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        req_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        code = "HTTP_ERROR"
        payload = _build_error_payload(
            message=message,
            status_code=exc.status_code,
            code=code,
            request_id=req_id,
        )
        logger.warning(
            "HTTPException: status=%s code=%s path=%s request_id=%s",
            exc.status_code,
            code,
            request.url.path,
            req_id,
        )
        return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-ID": req_id})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        req_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        errors = exc.errors()
        payload = _build_error_payload(
            message="Request validation failed",
            status_code=422,
            code="VALIDATION_ERROR",
            details={"errors": jsonable_encoder(errors)},
            request_id=req_id,
        )
        logger.info(
            "ValidationError: path=%s errors=%d request_id=%s",
            request.url.path,
            len(errors),
            req_id,
        )
        return JSONResponse(status_code=422, content=payload, headers={"X-Request-ID": req_id})

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):  # type: ignore[override]
        req_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        payload = _build_error_payload(
            message=exc.message,
            status_code=exc.status_code,
            code=exc.code,
            details=exc.details,
            request_id=req_id,
        )
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "AppException: status=%s code=%s path=%s request_id=%s message=%s",
            exc.status_code,
            exc.code,
            request.url.path,
            req_id,
            exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-ID": req_id})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore[override]
        req_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        logger.exception("UnhandledException: path=%s request_id=%s", request.url.path, req_id)
        payload = _build_error_payload(
            message="Internal server error",
            status_code=500,
            code="INTERNAL_SERVER_ERROR",
            request_id=req_id,
        )
        return JSONResponse(status_code=500, content=payload, headers={"X-Request-ID": req_id})
