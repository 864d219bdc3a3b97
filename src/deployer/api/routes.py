"""API route handlers for deployer endpoints."""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from deployer.api.models import (
    ErrorResponse,
    FirmwareInstallRequest,
    ProfilesResponse,
    ProgressResponse,
    SuccessResponse,
    TherapyConfigureRequest,
)
from deployer.errors import OperationInProgressError
from deployer.models.status import InstallPhase
from deployer.models.therapy import THERAPY_PROFILES
from deployer.services.state_manager import StateManager

router = APIRouter(prefix="/api/v1.0")


def get_state_manager(request: Request) -> StateManager:
    """Dependency returning the StateManager created at startup."""
    return request.app.state.state_manager


def _error(code: int, msg: str, phase: Optional[InstallPhase] = None) -> JSONResponse:
    body = ErrorResponse(code=code, msg=msg, phase=phase)
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))


def _ok(data: Optional[dict] = None) -> JSONResponse:
    body = SuccessResponse(data=data)
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(state_manager: StateManager = Depends(get_state_manager)):
    """GET /api/v1.0/progress - Query current deployment status.

    Response format (success):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "flow": "firmware",
                "phase": "installing",
                "progress": 52.0,
                "message": "Updating 2 device(s)...",
                "error": null,
                "devices": {"/Volumes/CIRCUITPY": {"stage": "copying", ...}},
                ...
            }
        }

    Response format (failed phase):
        {
            "code": 500,
            "msg": "Deployment failed: Failed to download firmware: ...",
            "data": {"phase": "failed", "guidance": {...}, ...}
        }
    """
    status = state_manager.get_status()

    if status.phase is InstallPhase.FAILED:
        reason = status.error or status.message
        return ProgressResponse(code=500, msg=f"Deployment failed: {reason}", data=status)
    return ProgressResponse(code=200, msg="success", data=status)


@router.post("/firmware/install", response_model=SuccessResponse)
async def post_firmware_install(
    request: FirmwareInstallRequest,
    background_tasks: BackgroundTasks,
    state_manager: StateManager = Depends(get_state_manager),
):
    """POST /api/v1.0/firmware/install - Start validate, download and install.

    Returns:
        code 200 if the run was started, 400 if the selection is incomplete
        (e.g. a device without role), 409 if a run is already active
    """
    try:
        state_manager.prepare_firmware_install(request.release, request.devices)
    except OperationInProgressError as e:
        return _error(409, str(e), state_manager.phase)
    except ValueError as e:
        return _error(400, str(e))

    background_tasks.add_task(state_manager.run_active)
    return _ok({"version": request.release.version, "devices": len(request.devices)})


@router.post("/therapy/configure", response_model=SuccessResponse)
async def post_therapy_configure(
    request: TherapyConfigureRequest,
    background_tasks: BackgroundTasks,
    state_manager: StateManager = Depends(get_state_manager),
):
    """POST /api/v1.0/therapy/configure - Apply a therapy profile in background."""
    try:
        state_manager.prepare_therapy_configure(
            request.profile, request.devices, request.advanced_settings
        )
    except OperationInProgressError as e:
        return _error(409, str(e), state_manager.phase)
    except ValueError as e:
        return _error(400, str(e))

    background_tasks.add_task(state_manager.run_active)
    return _ok({"profile": request.profile.value, "devices": len(request.devices)})


@router.post("/cancel", response_model=SuccessResponse)
async def post_cancel(state_manager: StateManager = Depends(get_state_manager)):
    """POST /api/v1.0/cancel - Skip devices that have not started yet.

    The device currently being processed always runs to completion.
    """
    if not state_manager.cancel():
        return _error(409, "No operation in progress", state_manager.phase)
    return _ok()


@router.post("/reset", response_model=SuccessResponse)
async def post_reset(state_manager: StateManager = Depends(get_state_manager)):
    """POST /api/v1.0/reset - Clear wizards and status back to idle."""
    try:
        state_manager.reset()
    except OperationInProgressError as e:
        return _error(409, str(e), state_manager.phase)
    return _ok()


@router.get("/profiles", response_model=ProfilesResponse)
async def get_profiles():
    """GET /api/v1.0/profiles - List available therapy profiles."""
    return ProfilesResponse(data=list(THERAPY_PROFILES))
