"""Unit tests for StateManager."""

import pytest

from deployer.errors import OperationInProgressError
from deployer.models.device import Device
from deployer.models.status import InstallPhase
from deployer.models.therapy import TherapyProfile
from deployer.services.installer import FirmwareInstaller, TherapyConfigurator
from deployer.services.state_manager import StateManager
from deployer.services.wizard import FirmwareStep
from deployer.utils.guidance import ERROR_GUIDANCE


@pytest.mark.unit
class TestStateManager:
    """Test session state with a fake backend."""

    @pytest.fixture
    def make_manager(self, config):
        def _make(backend):
            return StateManager(config, backend, backend)

        return _make

    @pytest.fixture
    def manager(self, make_manager, backend):
        return make_manager(backend)

    def test_initial_status(self, manager):
        status = manager.get_status()

        assert status.phase is InstallPhase.IDLE
        assert status.progress == 0
        assert status.message == "Deployer ready"
        assert status.flow is None
        assert not manager.is_running

    def test_prepare_firmware_install(self, manager, release, primary_device):
        runner = manager.prepare_firmware_install(release, [primary_device])

        assert isinstance(runner, FirmwareInstaller)
        assert manager.is_running
        assert manager.firmware_wizard.current_step is FirmwareStep.INSTALLING
        assert manager.get_status().flow == "firmware"

    def test_prepare_rejects_missing_role(self, manager, release):
        device = Device(path="/Volumes/CIRCUITPY", label="CIRCUITPY")

        with pytest.raises(ValueError, match="Device role not set: CIRCUITPY"):
            manager.prepare_firmware_install(release, [device])

        assert not manager.is_running
        assert manager.get_status().phase is InstallPhase.IDLE

    def test_prepare_rejects_empty_selection(self, manager, release):
        with pytest.raises(ValueError, match="No devices selected"):
            manager.prepare_firmware_install(release, [])

    def test_second_run_rejected(self, manager, release, primary_device):
        manager.prepare_firmware_install(release, [primary_device])

        with pytest.raises(OperationInProgressError, match="already in progress"):
            manager.prepare_therapy_configure(TherapyProfile.NOISY, [primary_device])

    @pytest.mark.asyncio
    async def test_run_active_success(self, manager, release, primary_device):
        manager.prepare_firmware_install(release, [primary_device])

        result = await manager.run_active()

        assert result.success is True
        assert not manager.is_running
        status = manager.get_status()
        assert status.phase is InstallPhase.COMPLETE
        assert status.progress == 100
        assert status.message == "All devices updated successfully"
        assert status.guidance is None
        assert "/Volumes/PRIMARY" in status.devices
        assert status.result == result

    @pytest.mark.asyncio
    async def test_run_active_download_failure(self, make_manager, make_backend, release, primary_device):
        manager = make_manager(make_backend(failures={"fetch_firmware": "HTTP 404"}))
        manager.prepare_firmware_install(release, [primary_device])

        result = await manager.run_active()

        assert result is None
        status = manager.get_status()
        assert status.phase is InstallPhase.FAILED
        assert status.error == "Failed to download firmware: HTTP 404"
        assert status.guidance == ERROR_GUIDANCE["FIRMWARE_DOWNLOAD_FAILED"]
        assert not manager.is_running

    @pytest.mark.asyncio
    async def test_device_failure_guidance(self, make_manager, make_backend, release, primary_device):
        """Guidance comes from the first failing device when the run itself finished."""
        manager = make_manager(make_backend(failures={"erase": "Device is read-only"}))
        manager.prepare_firmware_install(release, [primary_device])

        await manager.run_active()

        status = manager.get_status()
        assert status.phase is InstallPhase.FAILED
        assert status.error is None
        assert status.message == "Some devices failed to update"
        assert status.guidance == ERROR_GUIDANCE["DEVICE_NOT_WRITABLE"]

    @pytest.mark.asyncio
    async def test_run_active_without_staged_run(self, manager):
        with pytest.raises(RuntimeError):
            await manager.run_active()

    @pytest.mark.asyncio
    async def test_therapy_run(self, manager):
        devices = [Device(path="/dev/ttyACM0", label="Left")]
        runner = manager.prepare_therapy_configure(TherapyProfile.GENTLE, devices)
        assert isinstance(runner, TherapyConfigurator)

        result = await manager.run_active()

        assert result.success is True
        status = manager.get_status()
        assert status.flow == "therapy"
        assert status.phase is InstallPhase.COMPLETE
        assert status.message == "All devices configured successfully"

    def test_cancel_without_run(self, manager):
        assert manager.cancel() is False

    def test_cancel_active_run(self, manager, release, primary_device):
        runner = manager.prepare_firmware_install(release, [primary_device])

        assert manager.cancel() is True
        assert runner.coordinator.skip_requested

    def test_reset_while_running(self, manager, release, primary_device):
        manager.prepare_firmware_install(release, [primary_device])

        with pytest.raises(OperationInProgressError):
            manager.reset()

    @pytest.mark.asyncio
    async def test_reset_after_run(self, manager, release, primary_device):
        manager.prepare_firmware_install(release, [primary_device])
        await manager.run_active()

        manager.reset()

        assert manager.get_status().phase is InstallPhase.IDLE
        assert manager.firmware_wizard.selected_release is None
        assert manager.firmware_wizard.logs == []
