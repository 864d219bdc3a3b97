"""Progress events and deployment result models."""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from deployer.models.device import Device
from deployer.models.status import FirmwareStage, TherapyStage


class StageEvent(BaseModel):
    """One per-device progress notification.

    For a given device, stages never move backwards; ``complete`` and
    ``error`` are terminal and ``complete`` always carries progress 100.

    ``flow`` is derived from the stage type. Both stage enums share the
    ``complete`` and ``error`` values, so parsed payloads use ``flow`` to pick
    the enum back (``firmware`` when absent and the value is ambiguous).
    """

    model_config = ConfigDict(frozen=True)

    device_path: str = Field(..., description="Path the device had when its run started")
    flow: Literal["firmware", "therapy"] = Field("firmware", description="Flow the stage belongs to")
    stage: Union[FirmwareStage, TherapyStage] = Field(..., description="Current stage")
    progress: float = Field(..., ge=0, le=100, description="Stage progress (0-100)")
    message: str = Field(..., description="Human-readable status description")
    current_file: Optional[str] = Field(None, description="File being copied")
    new_device_label: Optional[str] = Field(
        None, description="Volume label after a successful rename"
    )
    new_device_path: Optional[str] = Field(
        None, description="Volume path after a successful rename"
    )

    @model_validator(mode="before")
    @classmethod
    def _stage_for_flow(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "stage" not in data:
            return data
        stage = data["stage"]
        if isinstance(stage, TherapyStage):
            return {**data, "flow": "therapy"}
        if isinstance(stage, FirmwareStage):
            return {**data, "flow": "firmware"}
        if not isinstance(stage, str):
            return data

        flow = data.get("flow")
        if flow is None:
            firmware_values = {s.value for s in FirmwareStage}
            flow = "firmware" if stage in firmware_values else "therapy"
        stage_type = TherapyStage if flow == "therapy" else FirmwareStage
        return {**data, "flow": flow, "stage": stage_type(stage)}

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal


class DeviceUpdateResult(BaseModel):
    """Terminal outcome for one device."""

    model_config = ConfigDict(frozen=True)

    device: Device
    success: bool
    error: Optional[str] = None


class UpdateResult(BaseModel):
    """Outcome of one batch; created once every device has been processed."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    device_updates: tuple[DeviceUpdateResult, ...] = Field(default_factory=tuple)

    @classmethod
    def from_device_results(
        cls,
        results: list[DeviceUpdateResult],
        success_message: str,
        failure_message: str,
    ) -> "UpdateResult":
        success = all(r.success for r in results)
        return cls(
            success=success,
            message=success_message if success else failure_message,
            device_updates=tuple(results),
        )


class TransferProgress(BaseModel):
    """Chunk-completion notification streamed by a firmware transfer."""

    current_file: str
    total_files: int = Field(..., ge=0)
    completed_files: int = Field(..., ge=0)


class ProfileProgress(BaseModel):
    """Notification streamed while a therapy profile is applied.

    ``stage`` is the raw backend string; ``log`` entries carry a negative
    percent and do not move progress.
    """

    stage: str
    percent: float
    message: str = ""
