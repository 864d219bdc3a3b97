"""Step state machines for the firmware update and therapy configuration flows.

Both wizards only hold selections, progress and results; deployment itself
runs elsewhere and folds its events in here.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import IntEnum
from typing import Optional

from pydantic import BaseModel, Field

from deployer.models.device import (
    MAX_BATCH_DEVICES,
    Device,
    DeviceRole,
    FirmwareRelease,
    ValidationResult,
)
from deployer.models.events import StageEvent, UpdateResult
from deployer.models.therapy import TherapyProfile


class FirmwareStep(IntEnum):
    SELECT_RELEASE = 0
    SELECT_DEVICES = 1
    INSTALLING = 2
    COMPLETE = 3


class TherapyStep(IntEnum):
    SELECT_PROFILE = 0
    SELECT_DEVICES = 1
    CONFIGURING = 2


class FirmwareWizardState(BaseModel):
    """Read-only view of the firmware wizard."""

    current_step: FirmwareStep
    selected_release: Optional[FirmwareRelease] = None
    selected_devices: list[Device] = Field(default_factory=list)
    update_progress: dict[str, StageEvent] = Field(default_factory=dict)
    update_result: Optional[UpdateResult] = None
    validation_results: dict[str, ValidationResult] = Field(default_factory=dict)
    logs: list[str] = Field(default_factory=list)


class TherapyWizardState(BaseModel):
    """Read-only view of the therapy wizard."""

    step: TherapyStep
    selected_profile: Optional[TherapyProfile] = None
    selected_devices: list[Device] = Field(default_factory=list)
    progress: dict[str, StageEvent] = Field(default_factory=dict)
    result: Optional[UpdateResult] = None
    logs: list[str] = Field(default_factory=list)


def _timestamped(message: str) -> str:
    return f"[{datetime.now().strftime('%H:%M:%S')}] {message}"


class _Wizard(ABC):
    """Clamped step navigation shared by both flows."""

    max_step: int = 0

    def __init__(self):
        self.logger = logging.getLogger("deployer.wizard")
        self.reset()

    def reset(self) -> None:
        self.logger.debug(f"{type(self).__name__} reset")
        self.step = 0
        self.selected_devices: list[Device] = []
        self.logs: list[str] = []

    def set_step(self, step: int) -> None:
        self.step = max(0, min(int(step), self.max_step))
        self.logger.debug(f"{type(self).__name__} step -> {self.step}")

    def next_step(self) -> None:
        self.set_step(self.step + 1)

    def previous_step(self) -> None:
        self.set_step(self.step - 1)

    @abstractmethod
    def can_go_next(self) -> bool:
        """Whether the current step's forward guard is satisfied."""

    def can_go_back(self) -> bool:
        # only device selection can return to the first step
        return self.step == 1

    def go_next(self) -> bool:
        """Advance one step if the current step's guard allows it."""
        if not self.can_go_next():
            return False
        self.next_step()
        return True

    def go_back(self) -> bool:
        """Return one step if the current step allows it."""
        if not self.can_go_back():
            return False
        self.previous_step()
        return True

    def set_devices(self, devices: list[Device]) -> None:
        if len(devices) > MAX_BATCH_DEVICES:
            raise ValueError(f"At most {MAX_BATCH_DEVICES} devices can be selected")
        self.selected_devices = list(devices)

    def add_log(self, message: str) -> None:
        self.logs.append(_timestamped(message))


class FirmwareWizard(_Wizard):
    """select release → select devices + roles → installing → complete."""

    max_step = FirmwareStep.COMPLETE

    def reset(self) -> None:
        super().reset()
        self.selected_release: Optional[FirmwareRelease] = None
        self.update_progress: dict[str, StageEvent] = {}
        self.update_result: Optional[UpdateResult] = None
        self.validation_results: dict[str, ValidationResult] = {}

    @property
    def current_step(self) -> FirmwareStep:
        return FirmwareStep(self.step)

    def can_go_next(self) -> bool:
        if self.step == FirmwareStep.SELECT_RELEASE:
            return self.selected_release is not None
        if self.step == FirmwareStep.SELECT_DEVICES:
            return len(self.selected_devices) > 0 and all(
                d.role is not None for d in self.selected_devices
            )
        return False

    def select_release(self, release: FirmwareRelease) -> None:
        self.selected_release = release

    def update_device_role(self, device_path: str, role: DeviceRole) -> None:
        self.selected_devices = [
            d.with_role(role) if d.path == device_path else d
            for d in self.selected_devices
        ]

    def update_device_info(self, device_path: str, label: str, new_path: str) -> None:
        """Apply a volume rename reported during installation."""
        self.selected_devices = [
            d.renamed(label, new_path) if d.path == device_path else d
            for d in self.selected_devices
        ]
        if device_path in self.update_progress and new_path != device_path:
            self.update_progress[new_path] = self.update_progress.pop(device_path)

    def set_update_progress(self, device_path: str, event: StageEvent) -> None:
        self.update_progress[device_path] = event

    def set_update_result(self, result: UpdateResult) -> None:
        self.update_result = result

    def set_validation_results(self, results: dict[str, ValidationResult]) -> None:
        self.validation_results = dict(results)

    def snapshot(self) -> FirmwareWizardState:
        return FirmwareWizardState(
            current_step=self.current_step,
            selected_release=self.selected_release,
            selected_devices=list(self.selected_devices),
            update_progress=dict(self.update_progress),
            update_result=self.update_result,
            validation_results=dict(self.validation_results),
            logs=list(self.logs),
        )


class TherapyWizard(_Wizard):
    """select profile → select devices → configuring/result."""

    max_step = TherapyStep.CONFIGURING

    def reset(self) -> None:
        super().reset()
        self.selected_profile: Optional[TherapyProfile] = None
        self.progress: dict[str, StageEvent] = {}
        self.result: Optional[UpdateResult] = None

    @property
    def current_step(self) -> TherapyStep:
        return TherapyStep(self.step)

    def can_go_next(self) -> bool:
        if self.step == TherapyStep.SELECT_PROFILE:
            return self.selected_profile is not None
        if self.step == TherapyStep.SELECT_DEVICES:
            return len(self.selected_devices) > 0
        return False

    def select_profile(self, profile: TherapyProfile) -> None:
        self.selected_profile = profile

    def toggle_device(self, device: Device) -> bool:
        """Select or deselect a device; returns whether it is now selected."""
        if any(d.path == device.path for d in self.selected_devices):
            self.selected_devices = [d for d in self.selected_devices if d.path != device.path]
            return False
        if len(self.selected_devices) >= MAX_BATCH_DEVICES:
            return False
        self.selected_devices = [*self.selected_devices, device]
        return True

    def set_progress(self, device_path: str, event: StageEvent) -> None:
        self.progress[device_path] = event

    def set_result(self, result: UpdateResult) -> None:
        self.result = result

    def snapshot(self) -> TherapyWizardState:
        return TherapyWizardState(
            step=self.current_step,
            selected_profile=self.selected_profile,
            selected_devices=list(self.selected_devices),
            progress=dict(self.progress),
            result=self.result,
            logs=list(self.logs),
        )
