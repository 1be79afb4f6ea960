import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.platform.response import api_response


class ScanPipelineError(Exception):
    """
    The one failure a scan is allowed to surface.

    Everything else (unreachable pages, a dead home page, an AI outage)
    degrades the result instead of failing it.
    """

    def __init__(self, code: str, message: str = ""):
        self.code = code
        self.message = message or code
        # Celery's json result backend rebuilds the error from args
        super().__init__(self.code, self.message)

    def __str__(self):
        return self.message

    def __reduce__(self):
        return self.__class__, (self.code, self.message)

    def to_dict(self) -> dict:
        return {"error_code": self.code, "message": self.message}


def add_exception_handlers(app):
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return api_response(message=str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            message="Validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            data={"errors": exc.errors()},
        )

    @app.exception_handler(ScanPipelineError)
    async def scan_pipeline_exception_handler(request: Request, exc: ScanPipelineError):
        return api_response(
            message=exc.message,
            status_code=status.HTTP_400_BAD_REQUEST,
            data=exc.to_dict(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logging.exception(f"Unhandled exception: {exc}")
        return api_response(
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
