"""Per-device stage sequencing for firmware deployment and therapy configuration."""

import logging
from enum import Enum
from pathlib import PurePath
from typing import Any, Awaitable, Callable, Optional, Union

from deployer.config import DeployerConfig
from deployer.errors import BackendError, DeployerError, RoleNotSetError, error_message
from deployer.models.device import Device, FirmwareBundle
from deployer.models.events import ProfileProgress, StageEvent, TransferProgress
from deployer.models.result import BackendResult, Err, Ok
from deployer.models.status import FirmwareStage, TherapyStage
from deployer.models.therapy import AdvancedSettings, TherapyProfile
from deployer.services.backend import DeviceBackend
from deployer.services.throttle import EventSink, ProgressThrottle
from deployer.utils.config_templates import get_config_for_role

LogSink = Callable[[str, str], None]


class DeployStep(str, Enum):
    """Remote steps of a firmware deployment, in execution order."""

    ERASE = "erase"
    TRANSFER = "transfer_firmware"
    WRITE_CONFIG = "write_config"
    RENAME = "rename_volume"


class StepPolicy(str, Enum):
    FATAL = "fatal"
    NON_FATAL = "non_fatal"


# A fatal failure aborts the device's run; a non-fatal one is logged and
# the sequence continues to complete.
STEP_POLICIES: dict[DeployStep, StepPolicy] = {
    DeployStep.ERASE: StepPolicy.FATAL,
    DeployStep.TRANSFER: StepPolicy.FATAL,
    DeployStep.WRITE_CONFIG: StepPolicy.FATAL,
    DeployStep.RENAME: StepPolicy.NON_FATAL,
}


class _EventEmitter:
    """Builds StageEvents for one device run and pushes them through a throttle."""

    def __init__(self, device_path: str, throttle: ProgressThrottle):
        self.device_path = device_path
        self.throttle = throttle
        self.stage: Optional[Union[FirmwareStage, TherapyStage]] = None
        self.progress: float = 0.0

    def emit(
        self,
        stage: Union[FirmwareStage, TherapyStage],
        progress: float,
        message: str,
        force: bool = False,
        **extra: Any,
    ) -> StageEvent:
        progress = max(0.0, min(float(progress), 100.0))
        event = StageEvent(
            device_path=self.device_path,
            stage=stage,
            progress=progress,
            message=message,
            **extra,
        )
        self.stage = stage
        self.progress = progress
        self.throttle(event)
        if force:
            self.throttle.flush()
        return event


def _make_throttle(on_event: Optional[EventSink], config: DeployerConfig) -> ProgressThrottle:
    return ProgressThrottle(
        on_event or (lambda event: None),
        min_interval_ms=config.throttle_min_interval_ms,
        min_change_percent=config.throttle_min_change_percent,
    )


class FirmwareSequencer:
    """Runs erase → transfer → configure → (rename) → complete for one device."""

    def __init__(self, backend: DeviceBackend, config: Optional[DeployerConfig] = None):
        """Initialize sequencer.

        Args:
            backend: Remote operation collaborator
            config: Deployer settings (defaults if None)
        """
        self.logger = logging.getLogger("deployer.sequencer")
        self.backend = backend
        self.config = config or DeployerConfig()

    async def run(
        self,
        device: Device,
        firmware: FirmwareBundle,
        on_event: Optional[EventSink] = None,
    ) -> Device:
        """Deploy firmware to one device.

        Args:
            device: Target device; must have a role assigned
            firmware: Locally available firmware bundle
            on_event: Sink for throttled StageEvents

        Returns:
            The device as it ends up (new label/path if the volume was renamed)

        Raises:
            RoleNotSetError: If the device has no role (before any remote call)
            BackendError: If erase, transfer or config write fails
        """
        emitter = _EventEmitter(device.path, _make_throttle(on_event, self.config))
        copy_weight = self.config.copy_weight
        self.logger.info(
            f"Deploying firmware {firmware.version} to {device.label} ({device.path})"
        )

        try:
            if device.role is None:
                raise RoleNotSetError()

            emitter.emit(FirmwareStage.WIPING, 0, "Wiping device...")
            await self._run_step(DeployStep.ERASE, self.backend.erase(device.path))

            emitter.emit(FirmwareStage.COPYING, 0, "Copying firmware files...")

            def on_transfer(update: TransferProgress) -> None:
                emitter.emit(
                    FirmwareStage.COPYING,
                    self.copy_progress(update),
                    f"Copying {update.current_file}...",
                    current_file=update.current_file,
                )

            await self._run_step(
                DeployStep.TRANSFER,
                self.backend.transfer_firmware(firmware.local_path, device.path, on_transfer),
            )

            emitter.emit(FirmwareStage.CONFIGURING, copy_weight, "Writing configuration...")
            await self._run_step(
                DeployStep.WRITE_CONFIG,
                self.backend.write_config(
                    device.path, device.role, get_config_for_role(device.role)
                ),
            )

            final_device = device
            if self.config.rename_volumes:
                renamed = await self._run_step(DeployStep.RENAME, self._rename(device))
                if renamed is not None:
                    final_device = renamed
                    emitter.emit(
                        FirmwareStage.CONFIGURING,
                        copy_weight + (100 - copy_weight) / 2,
                        f"Volume renamed to {renamed.label}",
                        force=True,
                        new_device_label=renamed.label,
                        new_device_path=renamed.path,
                    )

            emitter.emit(FirmwareStage.COMPLETE, 100, "Update complete!")
            self.logger.info(f"Deployment complete for {final_device.label}")
            return final_device

        except Exception as e:
            message = error_message(e)
            self.logger.error(f"Deployment failed for {device.path}: {message}")
            emitter.emit(FirmwareStage.ERROR, emitter.progress, message)
            raise
        finally:
            emitter.throttle.flush()

    def copy_progress(self, update: TransferProgress) -> float:
        """Map file-copy completion onto the copy share of the device scale."""
        copy_weight = self.config.copy_weight
        if update.total_files <= 0:
            return copy_weight
        return min((update.completed_files / update.total_files) * copy_weight, copy_weight)

    async def _run_step(
        self, step: DeployStep, operation: Awaitable[BackendResult[Any]]
    ) -> Any:
        """Await one remote step and apply its failure policy.

        Returns the step's value, or None when a non-fatal step failed.
        """
        self.logger.debug(f"Running step {step.value}")
        try:
            result = await operation
            return result.unwrap(step.value)
        except Exception as e:
            if STEP_POLICIES[step] is StepPolicy.FATAL:
                raise
            self.logger.warning(
                f"Non-fatal step {step.value} failed, continuing: {error_message(e)}"
            )
            return None

    async def _rename(self, device: Device) -> BackendResult[Optional[Device]]:
        new_name = self.config.volume_labels.get(device.role)
        if not new_name:
            return Ok(None)

        renamed = await self.backend.rename_volume(device.path, new_name)
        if isinstance(renamed, Err):
            return renamed

        resolved = await self.backend.resolve_renamed_path(device.path, new_name)
        if isinstance(resolved, Err):
            return resolved

        new_path = resolved.value
        # Hosts may append " 1", " 2"... when the name is taken; drive-letter
        # hosts keep the old path, in which case the label is the plain name.
        base_name = PurePath(new_path).name
        new_label = base_name if base_name.startswith(new_name) else new_name
        return Ok(device.renamed(new_label, new_path))


_BACKEND_THERAPY_STAGES = {
    "connecting": TherapyStage.CONNECTING,
    "sending": TherapyStage.SENDING,
    "rebooting": TherapyStage.REBOOTING,
    "complete": TherapyStage.COMPLETE,
    "error": TherapyStage.ERROR,
}


def map_therapy_stage(stage: str) -> TherapyStage:
    """Map a backend stage string onto TherapyStage (unknown → connecting)."""
    return _BACKEND_THERAPY_STAGES.get(stage, TherapyStage.CONNECTING)


class TherapySequencer:
    """Relays and throttles the streamed profile application for one device."""

    def __init__(self, backend: DeviceBackend, config: Optional[DeployerConfig] = None):
        self.logger = logging.getLogger("deployer.therapy")
        self.backend = backend
        self.config = config or DeployerConfig()

    async def run(
        self,
        device: Device,
        profile: TherapyProfile,
        advanced_settings: Optional[AdvancedSettings] = None,
        on_event: Optional[EventSink] = None,
        on_log: Optional[LogSink] = None,
    ) -> None:
        emitter = _EventEmitter(device.path, _make_throttle(on_event, self.config))
        streamed_error: Optional[str] = None
        completed_message: Optional[str] = None
        self.logger.info(f"Applying {profile.value} profile to {device.label} ({device.path})")

        def relay(update: ProfileProgress) -> None:
            nonlocal streamed_error, completed_message
            if update.stage == "log" or update.percent < 0:
                self.logger.info(f"{device.label}: {update.message}")
                if on_log:
                    on_log(device.path, update.message)
                return
            # Terminal events are only emitted once the call has returned.
            if streamed_error is not None or completed_message is not None:
                return

            stage = map_therapy_stage(update.stage)
            if stage is TherapyStage.ERROR:
                streamed_error = update.message or "Configuration failed"
                return
            if stage is TherapyStage.COMPLETE:
                completed_message = update.message or "Profile configured"
                return
            if emitter.stage is not None and stage.order < emitter.stage.order:
                stage = emitter.stage
            emitter.emit(stage, update.percent, update.message)

        try:
            if device.in_bootloader:
                raise DeployerError(
                    "Device is in bootloader mode. Please wait for it to boot "
                    "into application mode."
                )

            result = await self.backend.apply_therapy_profile(
                device.path, profile, advanced_settings, relay
            )
            result.unwrap("apply_therapy_profile")
            if streamed_error is not None:
                raise BackendError("apply_therapy_profile", streamed_error)

            emitter.emit(
                TherapyStage.COMPLETE, 100, completed_message or "Profile configured"
            )
            self.logger.info(f"Profile {profile.value} applied to {device.label}")

        except Exception as e:
            message = error_message(e)
            self.logger.error(f"Profile configuration failed for {device.path}: {message}")
            emitter.emit(TherapyStage.ERROR, emitter.progress, message)
            raise
        finally:
            emitter.throttle.flush()
