"""Pydantic models for HTTP API requests and responses."""

from typing import Optional

from pydantic import BaseModel, Field

from deployer.models.device import MAX_BATCH_DEVICES, Device, FirmwareRelease
from deployer.models.events import StageEvent, UpdateResult
from deployer.models.status import InstallPhase
from deployer.models.therapy import AdvancedSettings, TherapyProfile, TherapyProfileInfo
from deployer.utils.guidance import ErrorGuidance


class FirmwareInstallRequest(BaseModel):
    """POST /api/v1.0/firmware/install payload.

    Example:
        {
            "release": {
                "version": "2.1.0",
                "download_url": "https://example.com/firmware-2.1.0.zip"
            },
            "devices": [
                {"path": "/Volumes/CIRCUITPY", "label": "CIRCUITPY", "role": "PRIMARY"}
            ]
        }
    """

    release: FirmwareRelease = Field(..., description="Release to install")
    devices: list[Device] = Field(
        ...,
        min_length=1,
        max_length=MAX_BATCH_DEVICES,
        description="Target devices, each with a role",
    )


class TherapyConfigureRequest(BaseModel):
    """POST /api/v1.0/therapy/configure payload.

    Example:
        {
            "profile": "NOISY",
            "devices": [{"path": "/dev/ttyACM0", "label": "Left"}],
            "advanced_settings": {"disable_led_during_therapy": true}
        }
    """

    profile: TherapyProfile = Field(..., description="Profile to apply")
    devices: list[Device] = Field(
        ..., min_length=1, max_length=MAX_BATCH_DEVICES, description="Target devices"
    )
    advanced_settings: Optional[AdvancedSettings] = Field(
        None, description="Optional operator settings"
    )


class ProgressData(BaseModel):
    """Progress data nested in response."""

    flow: Optional[str] = Field(None, description="'firmware', 'therapy' or null")
    phase: InstallPhase = Field(..., description="Current installation phase")
    progress: float = Field(..., ge=0, le=100, description="Overall progress (0-100)")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(None, description="Failure reason if the run failed")
    guidance: Optional[ErrorGuidance] = Field(
        None, description="Troubleshooting steps for the failure"
    )
    devices: dict[str, StageEvent] = Field(
        default_factory=dict, description="Last event per device path"
    )
    result: Optional[UpdateResult] = Field(None, description="Batch result once finished")
    logs: list[str] = Field(default_factory=list, description="Run log lines")


class ProgressResponse(BaseModel):
    """GET /api/v1.0/progress response."""

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")


class ProfilesResponse(BaseModel):
    """GET /api/v1.0/profiles response."""

    code: int = Field(default=200)
    msg: str = Field(default="success")
    data: list[TherapyProfileInfo]


class SuccessResponse(BaseModel):
    """Success response for command endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(..., description="Application-level error code (400/409)")
    msg: str = Field(..., description="Error message")
    phase: Optional[InstallPhase] = Field(
        None, description="Current phase (for operation state errors)"
    )
