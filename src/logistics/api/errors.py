"""Map domain exceptions onto HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.integrations.fastapi import register_exception_handlers


def register_error_handlers(app: FastAPI) -> None:
    """Protean's handlers, with missing orders as 404 and stale revisions as 409."""
    register_exception_handlers(app)

    @app.exception_handler(ObjectNotFoundError)
    async def object_not_found(request: Request, exc: ObjectNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ExpectedVersionError)
    async def stale_revision(request: Request, exc: ExpectedVersionError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})
