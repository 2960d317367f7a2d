import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from KoriBackend.config import get_settings
from KoriBackend.errors import ApiError
from KoriBackend.responses import api_error
from KoriBackend.subapps.auth_routes import router as auth_router
from KoriBackend.subapps.chat_routes import router as chat_router
from KoriBackend.subapps.misc_routes import router as misc_router


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


# Turns pydantic error locations into `[{field, message}]`
def _validation_errors(exc: RequestValidationError) -> list[dict]:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        data = {"errors": exc.errors} if exc.errors else None
        return api_error(exc.status_code, exc.message, data)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return api_error(400, "Validation failed", {"errors": _validation_errors(exc)})

    @app.exception_handler(IntegrityError)
    async def _integrity_error(request: Request, exc: IntegrityError):
        logger.warning("db.integrity_error path=%s", request.url.path)
        return api_error(409, "Resource already exists")

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return api_error(404, f"Route {request.url.path} not found")
        return api_error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("request.unhandled path=%s", request.url.path)
        message = "Internal server error" if get_settings().is_production else str(exc) or "Internal server error"
        return api_error(500, message)


def create_app() -> FastAPI:
    _configure_logging()
    settings = get_settings()

    app = FastAPI(title="Kori API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(misc_router)
    app.include_router(auth_router)
    app.include_router(chat_router)
    return app


app = create_app()
