"""Entrypoint for the FastAPI application."""

import os
from dotenv import load_dotenv

# Load .env for local development; deployed environments inject env vars.
env_path = os.path.join(os.path.dirname(__file__), "../.env")
if os.path.exists(env_path):
    load_dotenv(dotenv_path=os.path.abspath(env_path))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import admin, files, health, invoices, shops
from .core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Invoice Intelligence", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api")
    app.include_router(invoices.router, prefix="/api")
    app.include_router(files.router, prefix="/api")
    app.include_router(shops.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")

    return app


app = create_app()
