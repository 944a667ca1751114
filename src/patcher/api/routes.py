"""API route handlers for patcher endpoints."""

import logging
from typing import Awaitable, Callable

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from patcher.api.models import CheckData, ErrorResponse, ProgressResponse, SuccessResponse
from patcher.models.errors import OperationInProgressError, UpdateError
from patcher.models.status import StageEnum
from patcher.services.state_manager import StateManager

router = APIRouter(prefix="/api/v1.0")


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(request: Request):
    """GET /api/v1.0/progress - Query current operation status.

    Response format (success):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "stage": "patching",
                "state": "busy",
                "operation": "update",
                "progress": 45,
                "message": "Updating...",
                "error": null
            }
        }

    Response format (failed stage):
        {
            "code": 500,
            "msg": "Update failed: CHECKSUM_MISMATCH: ...",
            "data": {...},
            "stage": "failed",
            "progress": 0
        }
    """
    state_manager: StateManager = request.app.state.state_manager
    status = state_manager.get_status()

    if status.stage == StageEnum.FAILED:
        msg = f"Update failed: {status.error}" if status.error else "Update failed"
        return ProgressResponse(
            code=500,
            msg=msg,
            data=status,
            stage=status.stage,
            progress=status.progress,
        )
    return ProgressResponse(code=200, msg="success", data=status)


@router.get("/check", response_model=SuccessResponse)
async def get_check(request: Request):
    """GET /api/v1.0/check - Silent check for a newer remote version.

    Returns code 409 (HTTP 200) if a foreground operation is running or
    starts while the check is in flight.
    """
    state_manager: StateManager = request.app.state.state_manager
    updater = request.app.state.updater
    available = await state_manager.run_check(updater.check_for_update)
    if available is None:
        return _busy_response(state_manager)
    data = CheckData(
        update_available=available,
        local_version=updater.store.local_version(),
    )
    return SuccessResponse(data=data.model_dump())


@router.post("/update", response_model=SuccessResponse)
async def post_update(request: Request, background_tasks: BackgroundTasks):
    """POST /api/v1.0/update - Run the update orchestrator in the background.

    Returns code 409 (HTTP 200) if another operation is running.
    """
    return _start(request, background_tasks, "update", request.app.state.updater.run)


@router.post("/repair", response_model=SuccessResponse)
async def post_repair(request: Request, background_tasks: BackgroundTasks):
    """POST /api/v1.0/repair - Re-download the full archive over the tree."""
    return _start(request, background_tasks, "repair", request.app.state.repair.repair)


@router.post("/install", response_model=SuccessResponse)
async def post_install(request: Request, background_tasks: BackgroundTasks):
    """POST /api/v1.0/install - First installation from the full archive."""
    return _start(request, background_tasks, "install", request.app.state.repair.install)


def _start(
    request: Request,
    background_tasks: BackgroundTasks,
    operation: str,
    workflow: Callable[[], Awaitable[object]],
) -> JSONResponse:
    state_manager: StateManager = request.app.state.state_manager
    # Held from here until the workflow releases it
    try:
        state_manager.reserve(operation)
    except OperationInProgressError:
        return _busy_response(state_manager)

    background_tasks.add_task(_run_workflow, state_manager, operation, workflow)
    return JSONResponse(
        status_code=200,
        content={"code": 200, "msg": "success", "data": None},
    )


def _busy_response(state_manager: StateManager) -> JSONResponse:
    status = state_manager.get_status()
    error = ErrorResponse(
        code=409,
        msg=f"Operation already in progress: {state_manager.operation_name}",
        stage=status.stage,
        progress=status.progress,
    )
    return JSONResponse(status_code=200, content=error.model_dump(mode="json"))


async def _run_workflow(
    state_manager: StateManager,
    operation: str,
    workflow: Callable[[], Awaitable[object]],
) -> None:
    """Background task wrapper; failures are already recorded in the state manager."""
    logger = logging.getLogger("patcher.api")
    try:
        await workflow()
    except OperationInProgressError as e:
        logger.warning(f"{operation} not started: {e}")
    except UpdateError as e:
        logger.info(f"{operation} finished with error: {e}")
    finally:
        state_manager.release_reservation(operation)
