"""Integration tests for installer runs against the fake agent backend."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from deployer.models.device import Device, ValidationResult
from deployer.models.status import FirmwareStage, InstallPhase
from deployer.models.therapy import TherapyProfile
from deployer.services.installer import FirmwareInstaller, TherapyConfigurator
from deployer.services.wizard import FirmwareStep, FirmwareWizard, TherapyStep, TherapyWizard


def _firmware_wizard(release, devices):
    wizard = FirmwareWizard()
    wizard.select_release(release)
    wizard.set_devices(devices)
    return wizard


def _logs(wizard):
    """Log lines without their timestamp prefix."""
    return [line.split("] ", 1)[-1] for line in wizard.logs]


@pytest.mark.integration
class TestFirmwareInstaller:

    @pytest.mark.asyncio
    async def test_two_device_install(self, backend, config, release, primary_device, secondary_device):
        wizard = _firmware_wizard(release, [primary_device, secondary_device])
        installer = FirmwareInstaller(backend, backend, wizard, config)

        result = await installer.run()

        assert result.success is True
        assert installer.error is None
        assert installer.phase is InstallPhase.COMPLETE
        assert installer.progress.percent == 100
        assert wizard.current_step is FirmwareStep.COMPLETE
        assert wizard.update_result == result

        # validation for every device before the shared download
        assert backend.ops()[:3] == ["validate_device", "validate_device", "fetch_firmware"]

        # renamed volumes are folded back into the selection and progress map
        assert [(d.label, d.path) for d in wizard.selected_devices] == [
            ("PRIMARY", "/Volumes/PRIMARY"),
            ("SECONDARY", "/Volumes/SECONDARY"),
        ]
        assert set(wizard.update_progress) == {"/Volumes/PRIMARY", "/Volumes/SECONDARY"}
        assert wizard.update_progress["/Volumes/PRIMARY"].stage is FirmwareStage.COMPLETE

        logs = _logs(wizard)
        assert "All devices passed validation" in logs
        assert "Firmware download complete" in logs
        assert "✓ Volume renamed to PRIMARY" in logs
        assert "✓ PRIMARY: Update complete!" in logs
        assert "Successfully updated SECONDARY" in logs
        assert logs[-1] == "All devices updated successfully"

    @pytest.mark.asyncio
    async def test_validation_failure_stops_before_download(
        self, make_backend, config, release, primary_device
    ):
        backend = make_backend(
            validation={
                primary_device.path: ValidationResult(valid=False, errors=["Device not writable"])
            }
        )
        wizard = _firmware_wizard(release, [primary_device])
        installer = FirmwareInstaller(backend, backend, wizard, config)

        result = await installer.run()

        assert result is None
        assert installer.error == "Device validation failed:\nCIRCUITPY: Device not writable"
        assert installer.phase is InstallPhase.FAILED
        assert wizard.current_step is FirmwareStep.INSTALLING
        assert "fetch_firmware" not in backend.ops()
        assert not wizard.validation_results[primary_device.path].valid

    @pytest.mark.asyncio
    async def test_validation_call_error(self, make_backend, config, release, primary_device):
        backend = make_backend(failures={"validate_device": "Agent unavailable"})
        installer = FirmwareInstaller(
            backend, backend, _firmware_wizard(release, [primary_device]), config
        )

        await installer.run()

        assert installer.error == (
            "Device validation failed:\nCIRCUITPY: Validation failed: Agent unavailable"
        )

    @pytest.mark.asyncio
    async def test_validation_warnings_do_not_block(self, make_backend, config, release, primary_device):
        backend = make_backend(
            validation={
                primary_device.path: ValidationResult(valid=True, warnings=["Low disk space"])
            }
        )
        wizard = _firmware_wizard(release, [primary_device])

        result = await FirmwareInstaller(backend, backend, wizard, config).run()

        assert result.success is True
        assert "⚠ Warnings for CIRCUITPY" in _logs(wizard)

    @pytest.mark.asyncio
    async def test_download_failure(self, make_backend, config, release, primary_device):
        backend = make_backend(failures={"fetch_firmware": "HTTP 404"})
        wizard = _firmware_wizard(release, [primary_device])
        installer = FirmwareInstaller(backend, backend, wizard, config)

        result = await installer.run()

        assert result is None
        assert installer.error == "Failed to download firmware: HTTP 404"
        assert "erase" not in backend.ops()
        assert _logs(wizard)[-1] == "✗ Error: Failed to download firmware: HTTP 404"

    @pytest.mark.asyncio
    async def test_one_device_fails(self, make_backend, config, release, primary_device, secondary_device):
        backend = make_backend(failures={("erase", secondary_device.path): "Device busy"})
        wizard = _firmware_wizard(release, [primary_device, secondary_device])
        installer = FirmwareInstaller(backend, backend, wizard, config)

        result = await installer.run()

        assert result.success is False
        assert result.message == "Some devices failed to update"
        assert installer.phase is InstallPhase.FAILED
        assert wizard.current_step is FirmwareStep.COMPLETE
        assert "✗ CIRCUITPY 1 failed: Device busy" in _logs(wizard)
        assert wizard.update_progress[secondary_device.path].stage is FirmwareStage.ERROR

    @pytest.mark.asyncio
    async def test_requires_release(self, backend, config, primary_device):
        wizard = FirmwareWizard()
        wizard.set_devices([primary_device])

        with pytest.raises(ValueError, match="No firmware release selected"):
            await FirmwareInstaller(backend, backend, wizard, config).run()

    @pytest.mark.asyncio
    async def test_events_forwarded_to_reporter(self, backend, config, release, primary_device):
        reporter = MagicMock()
        reporter.report_event = AsyncMock()
        wizard = _firmware_wizard(release, [primary_device])

        await FirmwareInstaller(backend, backend, wizard, config, reporter=reporter).run()

        stages = [c.args[0].stage for c in reporter.report_event.await_args_list]
        assert stages[0] is FirmwareStage.WIPING
        assert stages[-1] is FirmwareStage.COMPLETE


@pytest.mark.integration
class TestTherapyConfigurator:

    @pytest.fixture
    def devices(self):
        return [
            Device(path="/dev/ttyACM0", label="Left"),
            Device(path="/dev/ttyACM1", label="Right"),
        ]

    def _wizard(self, devices):
        wizard = TherapyWizard()
        wizard.select_profile(TherapyProfile.NOISY)
        wizard.set_devices(devices)
        return wizard

    @pytest.mark.asyncio
    async def test_configures_every_device(self, backend, config, devices):
        wizard = self._wizard(devices)
        configurator = TherapyConfigurator(backend, wizard, config)

        result = await configurator.run()

        assert result.success is True
        assert configurator.phase is InstallPhase.COMPLETE
        assert wizard.current_step is TherapyStep.CONFIGURING
        assert wizard.result == result
        assert backend.ops() == ["apply_therapy_profile", "apply_therapy_profile"]

        logs = _logs(wizard)
        assert logs[0] == "Starting configuration with Noisy profile..."
        assert "✓ Successfully configured Left" in logs
        assert "✓ Successfully configured Right" in logs

    @pytest.mark.asyncio
    async def test_streamed_log_lines(self, make_backend, config, devices):
        backend = make_backend(
            profile_events=[
                {"stage": "log", "percent": -1, "message": "Profile NOISY loaded"},
                {"stage": "sending", "percent": 50, "message": "Sending profile..."},
            ]
        )
        wizard = self._wizard(devices[:1])

        await TherapyConfigurator(backend, wizard, config).run()

        logs = _logs(wizard)
        assert "Left: Profile NOISY loaded" in logs
        assert "Left: Sending profile..." in logs

    @pytest.mark.asyncio
    async def test_cancel_skips_remaining(self, make_backend, config, devices):
        backend = make_backend()
        wizard = self._wizard(devices)
        configurator = TherapyConfigurator(backend, wizard, config)

        original = backend.apply_therapy_profile

        async def apply_then_cancel(*args, **kwargs):
            configurator.cancel()
            return await original(*args, **kwargs)

        backend.apply_therapy_profile = apply_then_cancel

        result = await configurator.run()

        assert result.success is False
        assert result.device_updates[0].success is True
        assert result.device_updates[1].error == "Skipped: batch cancelled"
        assert configurator.phase is InstallPhase.FAILED
        assert _logs(wizard)[-1] == "Configuration cancelled"
