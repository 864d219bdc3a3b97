"""Session state shared by the HTTP API: wizards, the active run and its status."""

import logging
from functools import partial
from typing import Awaitable, Callable, Optional, Union

from deployer.api.models import ProgressData
from deployer.config import DeployerConfig
from deployer.errors import OperationInProgressError, error_message
from deployer.models.device import Device, FirmwareRelease
from deployer.models.events import UpdateResult
from deployer.models.status import InstallPhase
from deployer.models.therapy import AdvancedSettings, TherapyProfile
from deployer.services.backend import DeviceBackend, FirmwareSource
from deployer.services.installer import FirmwareInstaller, TherapyConfigurator
from deployer.services.reporter import ReportService
from deployer.services.wizard import FirmwareWizard, TherapyWizard
from deployer.utils.guidance import get_error_guidance

FIRMWARE_FLOW = "firmware"
THERAPY_FLOW = "therapy"

_Runner = Union[FirmwareInstaller, TherapyConfigurator]


class StateManager:
    """Owns the wizards and at most one active run.

    One instance is created at startup and stored on ``app.state``; routes
    receive it through a dependency rather than constructing their own.
    """

    def __init__(
        self,
        config: DeployerConfig,
        backend: DeviceBackend,
        source: FirmwareSource,
        reporter: Optional[ReportService] = None,
    ):
        self.logger = logging.getLogger("deployer.state_manager")
        self.config = config
        self.backend = backend
        self.source = source
        self.reporter = reporter

        self.firmware_wizard = FirmwareWizard()
        self.therapy_wizard = TherapyWizard()

        self._flow: Optional[str] = None
        self._runner: Optional[_Runner] = None
        self._start: Optional[Callable[[], Awaitable[Optional[UpdateResult]]]] = None
        self._running = False
        self.logger.info("StateManager initialized")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def phase(self) -> InstallPhase:
        return self._runner.phase if self._runner else InstallPhase.IDLE

    def prepare_firmware_install(
        self, release: FirmwareRelease, devices: list[Device]
    ) -> FirmwareInstaller:
        """Load selections into the firmware wizard and stage an installer.

        Args:
            release: Release to install
            devices: Target devices, each with a role

        Returns:
            The staged FirmwareInstaller (started by ``run_active``)

        Raises:
            OperationInProgressError: If a run is already active
            ValueError: If the selection does not pass the wizard guards
        """
        self._ensure_idle()

        wizard = self.firmware_wizard
        wizard.reset()
        wizard.select_release(release)
        wizard.go_next()
        wizard.set_devices(devices)
        if not wizard.go_next():
            self._clear()
            missing = [d.label for d in devices if d.role is None]
            if missing:
                raise ValueError(f"Device role not set: {', '.join(missing)}")
            raise ValueError("No devices selected")

        runner = FirmwareInstaller(
            self.backend, self.source, wizard, self.config, self.reporter
        )
        self._stage(FIRMWARE_FLOW, runner, runner.run)
        self.logger.info(
            f"Staged firmware {release.version} for {len(devices)} device(s)"
        )
        return runner

    def prepare_therapy_configure(
        self,
        profile: TherapyProfile,
        devices: list[Device],
        advanced_settings: Optional[AdvancedSettings] = None,
    ) -> TherapyConfigurator:
        """Load selections into the therapy wizard and stage a configurator.

        Raises:
            OperationInProgressError: If a run is already active
            ValueError: If no devices are given or more than allowed
        """
        self._ensure_idle()

        wizard = self.therapy_wizard
        wizard.reset()
        wizard.select_profile(profile)
        wizard.go_next()
        wizard.set_devices(devices)
        if not wizard.go_next():
            self._clear()
            raise ValueError("No devices selected")

        runner = TherapyConfigurator(self.backend, wizard, self.config, self.reporter)
        self._stage(THERAPY_FLOW, runner, partial(runner.run, advanced_settings))
        self.logger.info(
            f"Staged therapy profile {profile.value} for {len(devices)} device(s)"
        )
        return runner

    async def run_active(self) -> Optional[UpdateResult]:
        """Run the staged operation to completion.

        Returns:
            The batch result, or None if the run failed before producing one
        """
        runner, start = self._runner, self._start
        if runner is None or start is None:
            raise RuntimeError("No operation staged")

        try:
            return await start()
        except Exception as e:
            runner.error = error_message(e)
            runner.progress.set_phase(InstallPhase.FAILED)
            self.logger.error(f"{self._flow} run failed: {runner.error}", exc_info=True)
            return None
        finally:
            self._running = False
            self._start = None

    def cancel(self) -> bool:
        """Ask the active run to skip devices that have not started.

        Returns:
            True if a run was active
        """
        if not self._running or self._runner is None:
            return False
        self._runner.cancel()
        self.logger.info(f"Cancellation requested for {self._flow} run")
        return True

    def reset(self) -> None:
        """Return both wizards and the status to idle.

        Raises:
            OperationInProgressError: If a run is still active
        """
        self._ensure_idle()
        self.firmware_wizard.reset()
        self.therapy_wizard.reset()
        self._clear()
        self.logger.info("State reset to idle")

    def get_status(self) -> ProgressData:
        """Get current status for GET /progress endpoint."""
        runner = self._runner
        if runner is None:
            return ProgressData(
                phase=InstallPhase.IDLE, progress=0, message="Deployer ready"
            )

        if self._flow == FIRMWARE_FLOW:
            devices = self.firmware_wizard.update_progress
            result = self.firmware_wizard.update_result
            logs = self.firmware_wizard.logs
        else:
            devices = self.therapy_wizard.progress
            result = self.therapy_wizard.result
            logs = self.therapy_wizard.logs

        failure = runner.error
        if failure is None and result is not None and not result.success:
            failure = next(
                (u.error for u in result.device_updates if not u.success and u.error),
                None,
            )

        return ProgressData(
            flow=self._flow,
            phase=runner.phase,
            progress=round(runner.progress.percent, 1),
            message=self._describe(runner, result),
            error=runner.error,
            guidance=get_error_guidance(failure) if failure else None,
            devices=dict(devices),
            result=result,
            logs=list(logs),
        )

    def _describe(self, runner: _Runner, result: Optional[UpdateResult]) -> str:
        phase = runner.phase
        if phase is InstallPhase.VALIDATING:
            return "Validating devices..."
        if phase is InstallPhase.DOWNLOADING:
            return "Downloading firmware..."
        if phase is InstallPhase.INSTALLING:
            count = runner.progress.device_count
            if self._flow == THERAPY_FLOW:
                return f"Configuring {count} device(s)..."
            return f"Updating {count} device(s)..."
        if result is not None:
            return result.message
        if phase is InstallPhase.FAILED:
            return "Deployment failed"
        return "Waiting to start"

    def _stage(
        self,
        flow: str,
        runner: _Runner,
        start: Callable[[], Awaitable[Optional[UpdateResult]]],
    ) -> None:
        self._flow = flow
        self._runner = runner
        self._start = start
        self._running = True

    def _clear(self) -> None:
        self._flow = None
        self._runner = None
        self._start = None

    def _ensure_idle(self) -> None:
        if self._running:
            raise OperationInProgressError(
                f"Operation already in progress: {self.phase.value}"
            )
