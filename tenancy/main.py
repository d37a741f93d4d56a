import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenancy import serializers, util
from tenancy.exceptions import TenancyError
from tenancy.i18n import _
from tenancy.routers import applications, leases, notifications, payments
from tenancy.settings import app_settings

logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", app_settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(applications.router)
app.include_router(leases.router)
app.include_router(payments.router)
app.include_router(notifications.router)


def _error(status_code: int, error: str, code: str) -> JSONResponse:
    return JSONResponse(
        serializers.ErrorEnvelope(error=error, code=code).model_dump(),
        status_code=status_code,
    )


@app.get("/info", tags=[util.Tags.meta])
async def get_info() -> dict[str, str]:
    """Return the environment and the email template language, for the frontend's diagnostics."""
    return {"environment": app_settings.environment, "language": app_settings.email_template_lang}


@app.exception_handler(TenancyError)
async def tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
    return _error(exc.status_code, exc.message, exc.code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    match exc.status_code:
        case status.HTTP_401_UNAUTHORIZED | status.HTTP_403_FORBIDDEN:
            code = "forbidden"
        case status.HTTP_404_NOT_FOUND:
            code = "not_found"
        case status.HTTP_409_CONFLICT:
            code = "conflict"
        case _:
            code = "error"
    return _error(exc.status_code, str(exc.detail), code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        error = f"{location}: {first.get('msg', '')}" if location else str(first.get("msg", ""))
    else:
        error = _("Invalid request")
    return _error(status.HTTP_400_BAD_REQUEST, error, "validation")


# A unique constraint caught a duplicate that the application-level checks missed, due to a concurrent request.
@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return _error(status.HTTP_409_CONFLICT, _("The resource was modified by another request"), "conflict")


@app.exception_handler(500)
async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, _("An unexpected error occurred"), "error")
