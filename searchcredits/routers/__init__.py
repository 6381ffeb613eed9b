"""Router package: collects all API routers and registers them on the FastAPI app."""

from fastapi import FastAPI

from searchcredits.routers import admin, auth, credits, search


def register_all_routers(app: FastAPI):
    app.include_router(auth.router)
    app.include_router(search.router)
    app.include_router(credits.router)
    app.include_router(admin.router)
