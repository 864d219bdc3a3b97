"""Unit tests for overall progress aggregation."""

import pytest

from deployer.models.events import StageEvent
from deployer.models.status import FirmwareStage, InstallPhase
from deployer.services.progress import OverallProgress, compute_overall_progress


def _event(path, stage, progress, **extra):
    return StageEvent(device_path=path, stage=stage, progress=progress, message="", **extra)


@pytest.mark.unit
class TestComputeOverallProgress:

    def test_single_device_mid_copy(self):
        """Stage progress 40 on one device during install gives 20 + 40 * 0.8."""
        result = compute_overall_progress(
            InstallPhase.INSTALLING, 100, {"/Volumes/A": 40}, device_count=1
        )

        assert result == pytest.approx(52)

    def test_download_phase_is_weighted(self):
        assert compute_overall_progress(InstallPhase.DOWNLOADING, 50, {}, 1) == 10
        assert compute_overall_progress(InstallPhase.DOWNLOADING, 100, {}, 1) == 20

    def test_download_phase_capped_at_weight(self):
        assert compute_overall_progress(InstallPhase.DOWNLOADING, 150, {}, 1) == 20

    def test_validating_and_idle_are_zero(self):
        assert compute_overall_progress(InstallPhase.IDLE, 0, {}, 0) == 0
        assert compute_overall_progress(InstallPhase.VALIDATING, 100, {}, 2) == 0

    def test_missing_device_counts_as_zero(self):
        """Two devices, only one reported at 50: average is 25."""
        result = compute_overall_progress(InstallPhase.INSTALLING, 100, {"/Volumes/A": 50}, 2)

        assert result == pytest.approx(20 + 25 * 0.8)

    def test_zero_devices(self):
        assert compute_overall_progress(InstallPhase.INSTALLING, 100, {}, 0) == 20

    def test_complete_phase_is_100(self):
        assert compute_overall_progress(InstallPhase.COMPLETE, 0, {}, 2) == 100

    def test_all_devices_complete_is_100(self):
        result = compute_overall_progress(
            InstallPhase.INSTALLING, 100, {"/a": 100, "/b": 100}, 2, all_complete=True
        )

        assert result == 100

    def test_failed_keeps_last_progress(self):
        result = compute_overall_progress(InstallPhase.FAILED, 100, {"/a": 100, "/b": 40}, 2)

        assert result == pytest.approx(20 + 70 * 0.8)

    def test_zero_download_weight(self):
        result = compute_overall_progress(
            InstallPhase.INSTALLING, 0, {"/dev/ttyACM0": 60}, 1, download_weight=0
        )

        assert result == 60


@pytest.mark.unit
class TestOverallProgress:

    def test_records_events(self):
        tracker = OverallProgress(device_count=1)
        tracker.set_phase(InstallPhase.INSTALLING)

        tracker.record(_event("/Volumes/A", FirmwareStage.COPYING, 40))

        assert tracker.percent == pytest.approx(52)

    def test_rekeys_on_rename(self):
        """A rename moves the device's entry to its new path."""
        tracker = OverallProgress(device_count=1)
        tracker.set_phase(InstallPhase.INSTALLING)
        tracker.record(_event("/Volumes/A", FirmwareStage.CONFIGURING, 80))

        tracker.record(
            _event(
                "/Volumes/A",
                FirmwareStage.CONFIGURING,
                90,
                new_device_label="PRIMARY",
                new_device_path="/Volumes/PRIMARY",
            )
        )

        assert set(tracker.device_progress) == {"/Volumes/PRIMARY"}
        assert tracker.percent == pytest.approx(20 + 90 * 0.8)

    def test_all_complete(self):
        tracker = OverallProgress(device_count=2)
        tracker.set_phase(InstallPhase.INSTALLING)
        tracker.record(_event("/a", FirmwareStage.COMPLETE, 100))
        assert not tracker.all_complete

        tracker.record(_event("/b", FirmwareStage.COMPLETE, 100))

        assert tracker.all_complete
        assert tracker.percent == 100

    def test_errored_device_keeps_progress(self):
        tracker = OverallProgress(device_count=2)
        tracker.set_phase(InstallPhase.INSTALLING)
        tracker.record(_event("/a", FirmwareStage.COMPLETE, 100))
        tracker.record(_event("/b", FirmwareStage.ERROR, 40))

        assert not tracker.all_complete
        assert tracker.percent == pytest.approx(20 + 70 * 0.8)

    def test_download_updates(self):
        tracker = OverallProgress(device_count=1)
        tracker.set_phase(InstallPhase.DOWNLOADING)
        tracker.set_download(25)

        assert tracker.percent == 5
