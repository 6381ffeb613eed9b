"""Dependency helpers for router modules."""

from fastapi import HTTPException
from starlette.requests import Request

from searchcredits.errors import SearchEngineError


def get_server(request: Request):
    return request.app.state.server


def http_error(e: Exception) -> HTTPException:
    """Map a service error onto the HTTP response the routers return."""
    if isinstance(e, SearchEngineError):
        return HTTPException(status_code=e.status_code, detail=e.to_detail())
    return HTTPException(status_code=400, detail=str(e))
