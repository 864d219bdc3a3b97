"""Sequential batch execution across the selected devices."""

import logging
from typing import Awaitable, Callable, Optional

from deployer.config import DeployerConfig
from deployer.errors import error_message
from deployer.models.device import Device, FirmwareBundle
from deployer.models.events import DeviceUpdateResult, StageEvent, UpdateResult
from deployer.models.therapy import AdvancedSettings, TherapyProfile
from deployer.services.backend import DeviceBackend
from deployer.services.sequencer import FirmwareSequencer, LogSink, TherapySequencer

ProgressCallback = Callable[[str, StageEvent], None]

FIRMWARE_SUCCESS_MESSAGE = "All devices updated successfully"
FIRMWARE_FAILURE_MESSAGE = "Some devices failed to update"
THERAPY_SUCCESS_MESSAGE = "All devices configured successfully"
THERAPY_FAILURE_MESSAGE = "Some devices failed to configure"
SKIPPED_ERROR = "Skipped: batch cancelled"


class BatchCoordinator:
    """Runs a per-device sequence over every device, one at a time.

    Devices sharing a host bus are never driven in parallel. A device's
    failure is recorded in its result and the batch moves on; the batch
    itself never raises for device failures.
    """

    def __init__(self, backend: DeviceBackend, config: Optional[DeployerConfig] = None):
        """Initialize coordinator.

        Args:
            backend: Remote operation collaborator shared by the sequencers
            config: Deployer settings (defaults if None)
        """
        self.logger = logging.getLogger("deployer.batch")
        self.backend = backend
        self.config = config or DeployerConfig()
        self._skip_requested = False

    @property
    def skip_requested(self) -> bool:
        return self._skip_requested

    def skip_remaining(self) -> None:
        """Skip devices that have not started yet; the running one finishes."""
        self.logger.info("Skip requested for remaining devices")
        self._skip_requested = True

    async def perform_batch_update(
        self,
        devices: list[Device],
        firmware: FirmwareBundle,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UpdateResult:
        """Deploy firmware to every device.

        Args:
            devices: Devices to update, in order
            firmware: Firmware bundle to deploy
            on_progress: Called with (device_path, StageEvent); device_path is
                the path the device had when the batch started

        Returns:
            UpdateResult with one DeviceUpdateResult per input device
        """
        sequencer = FirmwareSequencer(self.backend, self.config)
        self.logger.info(
            f"Starting firmware batch: version={firmware.version}, devices={len(devices)}"
        )

        def run_device(device: Device, sink: Callable[[StageEvent], None]) -> Awaitable:
            return sequencer.run(device, firmware, on_event=sink)

        return await self._run_batch(
            devices,
            run_device,
            on_progress,
            FIRMWARE_SUCCESS_MESSAGE,
            FIRMWARE_FAILURE_MESSAGE,
        )

    async def perform_therapy_batch(
        self,
        devices: list[Device],
        profile: TherapyProfile,
        advanced_settings: Optional[AdvancedSettings] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_log: Optional[LogSink] = None,
    ) -> UpdateResult:
        """Apply a therapy profile to every device (same loop as firmware)."""
        sequencer = TherapySequencer(self.backend, self.config)
        self.logger.info(
            f"Starting therapy batch: profile={profile.value}, devices={len(devices)}"
        )

        def run_device(device: Device, sink: Callable[[StageEvent], None]) -> Awaitable:
            return sequencer.run(
                device, profile, advanced_settings, on_event=sink, on_log=on_log
            )

        return await self._run_batch(
            devices,
            run_device,
            on_progress,
            THERAPY_SUCCESS_MESSAGE,
            THERAPY_FAILURE_MESSAGE,
        )

    async def _run_batch(
        self,
        devices: list[Device],
        run_device: Callable[[Device, Callable[[StageEvent], None]], Awaitable],
        on_progress: Optional[ProgressCallback],
        success_message: str,
        failure_message: str,
    ) -> UpdateResult:
        results: list[DeviceUpdateResult] = []

        for idx, device in enumerate(devices, start=1):
            if self._skip_requested:
                self.logger.info(f"Skipping {device.label}: batch cancelled")
                results.append(
                    DeviceUpdateResult(device=device, success=False, error=SKIPPED_ERROR)
                )
                continue

            self.logger.info(f"Device {idx}/{len(devices)}: {device.label} ({device.path})")
            start_path = device.path

            def sink(event: StageEvent, _path: str = start_path) -> None:
                if on_progress:
                    on_progress(_path, event)

            try:
                await run_device(device, sink)
                results.append(DeviceUpdateResult(device=device, success=True))
            except Exception as e:
                message = error_message(e)
                self.logger.error(f"Device {device.label} failed: {message}")
                results.append(
                    DeviceUpdateResult(device=device, success=False, error=message)
                )

        result = UpdateResult.from_device_results(
            results, success_message, failure_message
        )
        self.logger.info(
            f"Batch finished: success={result.success}, "
            f"{sum(r.success for r in results)}/{len(results)} devices succeeded"
        )
        return result
