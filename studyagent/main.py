"""
Study agent chat backend.

Wires configuration, logging, persistence, the capability registry, the
Gemini oracle and the intent router into one FastAPI app.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from studyagent.api import chat, health, usage
from studyagent.core.config import settings, validate_config
from studyagent.core.database import create_all_tables
from studyagent.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from studyagent.core.logging import configure_logging
from studyagent.core.middleware.request_id import RequestIdMiddleware
from studyagent.features.capabilities.catalog import build_default_registry
from studyagent.features.context.builder import ContextBuilder
from studyagent.features.intent.router import IntentRouter
from studyagent.features.oracle.client import GeminiOracle, GenerationOracle
from studyagent.features.plans.service import SqlPlanLookup, ensure_plans_seeded
from studyagent.features.usage.ledger import QuotaLedger
from studyagent.features.usage.store import SqlUsageStore

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

OracleFactory = Callable[[], GenerationOracle]


def create_app(oracle_factory: Optional[OracleFactory] = None) -> FastAPI:
    make_oracle = oracle_factory or GeminiOracle.from_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("studyagent")
        logger.info("Starting study agent backend...")
        try:
            create_all_tables()
            ensure_plans_seeded()
        except Exception as e:
            logger.error(f"Database initialization failed: {e}", extra={"error_code": "db_init_failed"})

        ledger = QuotaLedger(SqlUsageStore(), SqlPlanLookup())
        registry = build_default_registry()
        oracle = make_oracle()
        app.state.ledger = ledger
        app.state.registry = registry
        app.state.oracle = oracle
        app.state.intent_router = IntentRouter(ledger, registry, oracle, ContextBuilder(ledger))
        try:
            yield
        finally:
            await oracle.aclose()
            logger.info("Stopping study agent backend...")

    app = FastAPI(title="Study Agent - Chat Routing", lifespan=lifespan)

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat.router)
    app.include_router(usage.router)
    app.include_router(health.router)
    return app


app = create_app()
