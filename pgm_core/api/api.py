"""
Main FastAPI application for pgm.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pgm_core.lib.errors import PgmError
from .health import router as health_router
from .deploy import router as deploy_router
from .errors import not_found_handler, internal_error_handler, pgm_error_handler

app = FastAPI(
    title="pgm API",
    description="Apply PostgreSQL migrations, functions, triggers and views tracked in a ledger table",
    version="0.3.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router, tags=["system"])
app.include_router(deploy_router, tags=["operations"])

# Add error handlers
app.add_exception_handler(PgmError, pgm_error_handler)
app.add_exception_handler(404, not_found_handler)
app.add_exception_handler(500, internal_error_handler)

# To run: uvicorn pgm_core.api:app --reload --host 0.0.0.0 --port 8000
