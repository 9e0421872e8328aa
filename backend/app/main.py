import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.middleware.origin_policy import OriginPolicy, register_origin_policy_middleware
from app.routes.auth import router as auth_router
from app.routes.users import router as users_router
from app.routes.webhooks import router as webhooks_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Identity Sync API")

origin_policy = OriginPolicy.from_settings(settings)
logger.info(
    "Startup config: ENV=%s origins=%d public_routes=%d self_authenticated_prefixes=%s webhook_secret=%s",
    settings.ENV,
    len(origin_policy.allowed_origins),
    len(origin_policy.public_routes),
    ",".join(origin_policy.self_authenticated_prefixes) or "-",
    bool(settings.IDENTITY_WEBHOOK_SECRET),
)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": _error_code(exc.status_code), "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request payload",
            "details": {"errors": exc.errors()},
        },
    )


register_origin_policy_middleware(app, origin_policy)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(webhooks_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}
