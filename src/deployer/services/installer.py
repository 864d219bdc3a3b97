"""End-to-end runs: firmware installation and therapy configuration.

A runner takes the selections held by a wizard, drives the batch
coordinator, and folds every relayed event back into the wizard, the
overall progress tracker and (optionally) the report service.
"""

import asyncio
import logging
from typing import Optional

from deployer.config import DeployerConfig
from deployer.errors import DeployerError, error_message
from deployer.models.device import Device, FirmwareBundle, FirmwareRelease, ValidationResult
from deployer.models.events import StageEvent, UpdateResult
from deployer.models.result import Err
from deployer.models.status import InstallPhase
from deployer.models.therapy import AdvancedSettings, get_profile_info
from deployer.services.backend import DeviceBackend, FirmwareSource
from deployer.services.batch import BatchCoordinator
from deployer.services.progress import OverallProgress
from deployer.services.reporter import ReportService
from deployer.services.wizard import FirmwareStep, FirmwareWizard, TherapyStep, TherapyWizard
from deployer.utils.guidance import format_validation_errors


class _Runner:
    """Shared plumbing: phase, error, cancellation and event reporting."""

    def __init__(
        self,
        backend: DeviceBackend,
        config: Optional[DeployerConfig] = None,
        reporter: Optional[ReportService] = None,
        coordinator: Optional[BatchCoordinator] = None,
        download_weight: float = 0,
    ):
        self.backend = backend
        self.config = config or DeployerConfig()
        self.reporter = reporter
        self.coordinator = coordinator or BatchCoordinator(backend, self.config)
        self.progress = OverallProgress(download_weight=download_weight)
        self.error: Optional[str] = None
        self._report_tasks: set[asyncio.Task] = set()

    @property
    def phase(self) -> InstallPhase:
        return self.progress.phase

    def cancel(self) -> None:
        """Skip devices that have not started; the current device finishes."""
        self.coordinator.skip_remaining()

    def _report(self, event: StageEvent) -> None:
        if self.reporter is None:
            return
        task = asyncio.get_running_loop().create_task(self.reporter.report_event(event))
        self._report_tasks.add(task)
        task.add_done_callback(self._report_tasks.discard)

    async def _drain_reports(self) -> None:
        if self._report_tasks:
            await asyncio.gather(*self._report_tasks)


class FirmwareInstaller(_Runner):
    """validate → download → install across the firmware wizard's devices."""

    def __init__(
        self,
        backend: DeviceBackend,
        source: FirmwareSource,
        wizard: FirmwareWizard,
        config: Optional[DeployerConfig] = None,
        reporter: Optional[ReportService] = None,
        coordinator: Optional[BatchCoordinator] = None,
    ):
        config = config or DeployerConfig()
        super().__init__(
            backend,
            config,
            reporter,
            coordinator,
            download_weight=config.download_weight,
        )
        self.logger = logging.getLogger("deployer.installer")
        self.source = source
        self.wizard = wizard

    async def run(self) -> Optional[UpdateResult]:
        """Run the installation for the wizard's current selections.

        Returns:
            The batch UpdateResult, or None if validation or download failed
            (the reason is in ``self.error`` and the wizard log)

        Raises:
            ValueError: If no release or no devices are selected
        """
        release = self.wizard.selected_release
        devices = list(self.wizard.selected_devices)
        if release is None:
            raise ValueError("No firmware release selected")
        if not devices:
            raise ValueError("No devices selected")

        self.progress.device_count = len(devices)
        self.wizard.set_step(FirmwareStep.INSTALLING)

        try:
            await self._validate(devices)
            firmware = await self._download(release)
            result = await self._install(devices, firmware)
        except Exception as e:
            self.error = error_message(e)
            self.progress.set_phase(InstallPhase.FAILED)
            self.logger.error(f"Installation failed: {self.error}")
            self.wizard.add_log(f"✗ Error: {self.error}")
            return None
        finally:
            await self._drain_reports()

        self.wizard.set_update_result(result)
        self.progress.set_phase(
            InstallPhase.COMPLETE if result.success else InstallPhase.FAILED
        )
        self.wizard.set_step(FirmwareStep.COMPLETE)
        return result

    async def _validate(self, devices: list[Device]) -> None:
        self.progress.set_phase(InstallPhase.VALIDATING)
        self.wizard.add_log("Validating devices before installation...")

        results: dict[str, ValidationResult] = {}
        errors: list[str] = []
        for device in devices:
            outcome = await self.backend.validate_device(device.path)
            if isinstance(outcome, Err):
                validation = ValidationResult(
                    valid=False, errors=[f"Validation failed: {outcome.message}"]
                )
            else:
                validation = outcome.value
            results[device.path] = validation

            if not validation.valid:
                self.wizard.add_log(f"✗ Validation failed for {device.label}")
                for err in validation.errors:
                    self.wizard.add_log(f"  - {err}")
                    errors.append(f"{device.label}: {err}")
            elif validation.warnings:
                self.wizard.add_log(f"⚠ Warnings for {device.label}")
                for warning in validation.warnings:
                    self.wizard.add_log(f"  - {warning}")
            else:
                self.wizard.add_log(f"✓ {device.label} passed validation")

        self.wizard.set_validation_results(results)
        if errors:
            raise DeployerError(
                f"Device validation failed:\n{format_validation_errors(errors)}"
            )
        self.wizard.add_log("All devices passed validation")

    async def _download(self, release: FirmwareRelease) -> FirmwareBundle:
        self.progress.set_phase(InstallPhase.DOWNLOADING)
        self.progress.set_download(0)
        self.wizard.add_log(f"Starting firmware download for version {release.version}...")

        fetched = await self.source.fetch_firmware(release, on_progress=self.progress.set_download)
        if isinstance(fetched, Err):
            raise DeployerError(f"Failed to download firmware: {fetched.message}")
        firmware = fetched.value

        self.progress.set_download(100)
        self.wizard.add_log("Firmware download complete")
        return firmware

    async def _install(self, devices: list[Device], firmware: FirmwareBundle) -> UpdateResult:
        self.progress.set_phase(InstallPhase.INSTALLING)
        self.wizard.add_log(f"Installing firmware on {len(devices)} device(s)...")

        # keyed by the path each device had when the batch started
        current_paths = {d.path: d.path for d in devices}
        labels = {d.path: d.label for d in devices}
        last_messages: dict[str, str] = {}

        def on_progress(start_path: str, event: StageEvent) -> None:
            current = current_paths[start_path]
            self.progress.record(event, device_path=current)

            if event.new_device_label and event.new_device_path:
                self.wizard.update_device_info(
                    current, event.new_device_label, event.new_device_path
                )
                current_paths[start_path] = current = event.new_device_path
                labels[start_path] = event.new_device_label
                self.wizard.add_log(f"✓ Volume renamed to {event.new_device_label}")

            self.wizard.set_update_progress(current, event)

            if event.message and event.message != last_messages.get(start_path):
                prefix = "✓ " if event.stage.value == "complete" else ""
                self.wizard.add_log(f"{prefix}{labels[start_path]}: {event.message}")
                last_messages[start_path] = event.message

            self._report(event)

        result = await self.coordinator.perform_batch_update(devices, firmware, on_progress)

        for update in result.device_updates:
            label = labels.get(update.device.path, update.device.label)
            if update.success:
                self.wizard.add_log(f"Successfully updated {label}")
            else:
                self.wizard.add_log(f"✗ {label} failed: {update.error}")
        self.wizard.add_log(result.message)
        return result


class TherapyConfigurator(_Runner):
    """Applies the therapy wizard's profile to its selected devices."""

    def __init__(
        self,
        backend: DeviceBackend,
        wizard: TherapyWizard,
        config: Optional[DeployerConfig] = None,
        reporter: Optional[ReportService] = None,
        coordinator: Optional[BatchCoordinator] = None,
    ):
        super().__init__(backend, config, reporter, coordinator, download_weight=0)
        self.logger = logging.getLogger("deployer.configurator")
        self.wizard = wizard

    async def run(
        self, advanced_settings: Optional[AdvancedSettings] = None
    ) -> UpdateResult:
        profile = self.wizard.selected_profile
        devices = list(self.wizard.selected_devices)
        if profile is None:
            raise ValueError("No therapy profile selected")
        if not devices:
            raise ValueError("No devices selected")

        self.progress.device_count = len(devices)
        self.progress.set_phase(InstallPhase.INSTALLING)
        self.wizard.set_step(TherapyStep.CONFIGURING)

        info = get_profile_info(profile.value)
        self.wizard.add_log(
            f"Starting configuration with {info.name if info else profile.value} profile..."
        )
        self.wizard.add_log(f"Configuring {len(devices)} device(s)")
        labels = {d.path: d.label for d in devices}

        def on_progress(start_path: str, event: StageEvent) -> None:
            self.progress.record(event)
            self.wizard.set_progress(start_path, event)
            self.wizard.add_log(f"{labels[start_path]}: {event.message}")
            self._report(event)

        def on_log(device_path: str, message: str) -> None:
            self.wizard.add_log(f"{labels.get(device_path, device_path)}: {message}")

        try:
            result = await self.coordinator.perform_therapy_batch(
                devices, profile, advanced_settings, on_progress, on_log
            )
        finally:
            await self._drain_reports()

        for update in result.device_updates:
            if update.success:
                self.wizard.add_log(f"✓ Successfully configured {update.device.label}")
            else:
                self.wizard.add_log(
                    f"✗ Error configuring {update.device.label}: {update.error}"
                )
        if self.coordinator.skip_requested:
            self.wizard.add_log("Configuration cancelled")

        self.wizard.set_result(result)
        self.progress.set_phase(
            InstallPhase.COMPLETE if result.success else InstallPhase.FAILED
        )
        return result
