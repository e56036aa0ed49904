import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from enrollment_engine.api.v1.academic_years.router import router as academic_years_router
from enrollment_engine.api.v1.enrollment.router import router as enrollment_router
from enrollment_engine.api.v1.grades.router import router as grades_router
from enrollment_engine.api.v1.rollover.router import router as rollover_router
from enrollment_engine.core.logging_config import configure_logging

logger = logging.getLogger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or missing request fields are a plain 400, no retry."""
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    logger.info("Rejected request to %s: %s", request.url.path, message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": message, "detail": errors},
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Enrollment Engine")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Routers
    app.include_router(academic_years_router)
    app.include_router(grades_router)
    app.include_router(enrollment_router)
    app.include_router(rollover_router)

    return app


app = create_app()
