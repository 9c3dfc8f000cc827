"""
Plan and apply endpoints.
"""

import logging

from fastapi import APIRouter

from pgm_core.api.models import ApplyRequest, ApplyResponse, ErrorResponse
from pgm_core.lib.config import Settings
from pgm_core.lib.connection import connect
from pgm_core.lib.deploy import deploy
from pgm_core.lib.planner import DRIFT_ERROR

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid project or configuration"},
    409: {"model": ErrorResponse, "description": "Another run holds the ledger lock"},
    500: {"model": ErrorResponse, "description": "Database or execution error"},
}


def _run(request: ApplyRequest, dry_run: bool) -> dict:
    settings = Settings.resolve(
        path=request.path,
        dsn=request.dsn,
        drift_policy=DRIFT_ERROR if request.strict else None,
    )
    logging.info(f"API {'plan' if dry_run else 'apply'} for {settings.path}")
    with connect(settings.dsn) as conn:
        result = deploy(
            conn,
            settings.path,
            dry_run=dry_run,
            fake=request.fake,
            drift_policy=settings.drift_policy,
            lock_timeout=settings.lock_timeout,
        )
    return result.to_dict()


@router.post("/plan", response_model=ApplyResponse, responses=ERROR_RESPONSES)
def plan(request: ApplyRequest):
    """
    Compute the pending actions for a project without touching the database.
    The dry_run flag of the request is ignored; this endpoint never writes.
    """
    return _run(request, dry_run=True)


@router.post("/apply", response_model=ApplyResponse, responses=ERROR_RESPONSES)
def apply(request: ApplyRequest):
    """
    Apply a project to the target database.

    Default is dry-run mode for safety. Send dry_run=false to execute the plan
    inside one transaction, and fake=true to record pending migrations without
    running them.
    """
    return _run(request, dry_run=request.dry_run)
