"""Overall progress aggregation across the download and install phases."""

from typing import Mapping, Optional

from deployer.models.events import StageEvent
from deployer.models.status import InstallPhase


def compute_overall_progress(
    phase: InstallPhase,
    download_percent: float,
    device_progress: Mapping[str, float],
    device_count: int,
    download_weight: float = 20,
    all_complete: bool = False,
) -> float:
    """Combine download and per-device progress into one 0-100 value.

    Args:
        phase: Current installation phase
        download_percent: Download progress (0-100)
        device_progress: Last known stage progress per device path
        device_count: Number of devices in the batch (missing entries count as 0)
        download_weight: Share of the bar occupied by the download phase
        all_complete: Every device has reached ``complete``

    Returns:
        Overall progress, 0-100
    """
    if phase is InstallPhase.COMPLETE or all_complete:
        return 100.0
    if phase in (InstallPhase.IDLE, InstallPhase.VALIDATING):
        return 0.0
    if phase is InstallPhase.DOWNLOADING:
        return min(max(download_percent, 0.0) * download_weight / 100, download_weight)

    total = sum(min(p, 100.0) for p in device_progress.values())
    average = total / device_count if device_count > 0 else 0.0
    return min(download_weight + average * (100 - download_weight) / 100, 100.0)


class OverallProgress:
    """Folds relayed StageEvents into the overall progress value.

    Errored devices keep contributing their last known progress.
    """

    def __init__(self, device_count: int = 0, download_weight: float = 20):
        self.device_count = device_count
        self.download_weight = download_weight
        self.phase = InstallPhase.IDLE
        self.download_percent = 0.0
        self.device_progress: dict[str, float] = {}
        self.device_stages: dict[str, str] = {}

    def set_phase(self, phase: InstallPhase) -> None:
        self.phase = phase

    def set_download(self, percent: float) -> None:
        self.download_percent = percent

    def record(self, event: StageEvent, device_path: Optional[str] = None) -> None:
        """Store an event under its device (re-keyed when the volume moved).

        Args:
            event: Relayed stage event
            device_path: Current key for the device (defaults to event.device_path)
        """
        key = device_path or event.device_path
        if event.new_device_path and event.new_device_path != key:
            self.device_progress.pop(key, None)
            self.device_stages.pop(key, None)
            key = event.new_device_path
        self.device_progress[key] = event.progress
        self.device_stages[key] = event.stage.value

    @property
    def all_complete(self) -> bool:
        if self.device_count == 0 or len(self.device_stages) < self.device_count:
            return False
        return all(stage == "complete" for stage in self.device_stages.values())

    @property
    def percent(self) -> float:
        return compute_overall_progress(
            self.phase,
            self.download_percent,
            self.device_progress,
            self.device_count,
            download_weight=self.download_weight,
            all_complete=self.all_complete,
        )
