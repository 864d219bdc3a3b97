"""Global pytest fixtures and configuration."""

import sys
from pathlib import Path
from typing import Optional

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from deployer.config import DeployerConfig  # noqa: E402
from deployer.models.device import (  # noqa: E402
    Device,
    DeviceRole,
    FirmwareBundle,
    FirmwareRelease,
    ValidationResult,
)
from deployer.models.events import ProfileProgress, TransferProgress  # noqa: E402
from deployer.models.result import Err, Ok  # noqa: E402


class FakeBackend:
    """In-memory DeviceBackend and FirmwareSource recording every call.

    Failures are configured per operation name, or per (operation, path)
    for a single device: ``FakeBackend(failures={"erase": "Device busy"})``.
    """

    def __init__(
        self,
        files: tuple = ("boot.py", "code.py"),
        failures: Optional[dict] = None,
        renamed_paths: Optional[dict] = None,
        profile_events: Optional[list] = None,
        validation: Optional[dict] = None,
    ):
        self.files = files
        self.failures = dict(failures or {})
        self.renamed_paths = dict(renamed_paths or {})
        self.profile_events = list(profile_events or [])
        self.validation = dict(validation or {})
        self.calls: list[tuple] = []
        self.configs: dict[str, str] = {}

    def _result(self, operation: str, device_path: str, value=None):
        message = self.failures.get((operation, device_path)) or self.failures.get(operation)
        if message:
            return Err(message)
        return Ok(value)

    def ops(self, device_path: Optional[str] = None) -> list[str]:
        return [c[0] for c in self.calls if device_path is None or c[1] == device_path]

    async def erase(self, device_path):
        self.calls.append(("erase", device_path))
        return self._result("erase", device_path)

    async def transfer_firmware(self, firmware_path, device_path, on_progress):
        self.calls.append(("transfer_firmware", device_path))
        total = len(self.files)
        for done, name in enumerate(self.files, start=1):
            on_progress(
                TransferProgress(current_file=name, total_files=total, completed_files=done)
            )
        return self._result("transfer_firmware", device_path)

    async def write_config(self, device_path, role, config_content):
        self.calls.append(("write_config", device_path))
        self.configs[device_path] = config_content
        return self._result("write_config", device_path)

    async def rename_volume(self, device_path, new_name):
        self.calls.append(("rename_volume", device_path))
        return self._result("rename_volume", device_path)

    async def resolve_renamed_path(self, old_path, expected_name):
        self.calls.append(("resolve_renamed_path", old_path))
        new_path = self.renamed_paths.get(old_path, f"/Volumes/{expected_name}")
        return self._result("resolve_renamed_path", old_path, new_path)

    async def apply_therapy_profile(self, device_path, profile, advanced_settings, on_progress):
        self.calls.append(("apply_therapy_profile", device_path))
        for event in self.profile_events:
            on_progress(ProfileProgress(**event))
        return self._result("apply_therapy_profile", device_path)

    async def validate_device(self, device_path):
        self.calls.append(("validate_device", device_path))
        failed = self._result("validate_device", device_path)
        if isinstance(failed, Err):
            return failed
        return Ok(self.validation.get(device_path, ValidationResult(valid=True)))

    async def fetch_firmware(self, release, on_progress=None):
        self.calls.append(("fetch_firmware", release.version))
        for percent in (0, 50, 100):
            if on_progress:
                on_progress(percent)
        return self._result(
            "fetch_firmware",
            release.version,
            FirmwareBundle(version=release.version, local_path=f"/cache/firmware/{release.version}"),
        )


@pytest.fixture
def make_backend():
    """Factory for FakeBackend with custom failures or streams."""
    return FakeBackend


@pytest.fixture
def backend():
    """FakeBackend where every operation succeeds."""
    return FakeBackend()


@pytest.fixture
def config(tmp_path):
    """Deployer config pointing at temporary directories."""
    return DeployerConfig(
        log_file=str(tmp_path / "logs" / "deployer.log"),
    )


@pytest.fixture
def primary_device():
    return Device(path="/Volumes/CIRCUITPY", label="CIRCUITPY", role=DeviceRole.PRIMARY)


@pytest.fixture
def secondary_device():
    return Device(path="/Volumes/CIRCUITPY 1", label="CIRCUITPY 1", role=DeviceRole.SECONDARY)


@pytest.fixture
def firmware(tmp_path):
    return FirmwareBundle(version="2.1.0", local_path=str(tmp_path / "firmware" / "2.1.0"))


@pytest.fixture
def release():
    return FirmwareRelease(
        version="2.1.0",
        tag_name="v2.1.0",
        download_url="https://example.com/firmware-2.1.0.zip",
    )
