"""Device and firmware data models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


MAX_BATCH_DEVICES = 2


class DeviceRole(str, Enum):
    """Role assignment selecting which configuration template a device gets."""

    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


class Device(BaseModel):
    """A physically connected device as reported by discovery.

    Treated as an immutable value for the duration of one deployment attempt.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(
        ..., min_length=1, description="Connection path (mount point or serial port)"
    )
    label: str = Field(..., description="Display label (volume name)")
    role: Optional[DeviceRole] = Field(None, description="Assigned role, if any")
    in_bootloader: bool = Field(
        default=False, description="Device is in bootloader/DFU mode"
    )
    is_circuit_py: bool = Field(
        default=True, description="Device runs the application firmware"
    )

    def with_role(self, role: DeviceRole) -> "Device":
        return self.model_copy(update={"role": role})

    def renamed(self, label: str, path: str) -> "Device":
        return self.model_copy(update={"label": label, "path": path})


class FirmwareRelease(BaseModel):
    """A published firmware release selectable by the operator."""

    version: str = Field(..., min_length=1, description="Release version")
    tag_name: str = Field(default="", description="Source control tag")
    download_url: str = Field(
        ..., pattern=r"^https?://.+", description="Firmware zip download URL"
    )
    sha256: Optional[str] = Field(
        None, pattern=r"^[a-f0-9]{64}$", description="Expected SHA-256 of the zip"
    )
    release_notes: str = Field(default="", description="Release notes")


class FirmwareBundle(BaseModel):
    """A resolved, locally available firmware artifact."""

    model_config = ConfigDict(frozen=True)

    version: str = Field(..., description="Firmware version")
    local_path: str = Field(..., description="Local directory holding the files")


class ValidationResult(BaseModel):
    """Pre-flight check result for one device."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    available_space_mb: Optional[float] = None
    required_space_mb: Optional[float] = None
