"""Stage and phase enums for device deployment."""

from enum import Enum


class FirmwareStage(str, Enum):
    """Per-device firmware deployment stages.

    State transitions:
    wiping → copying → configuring → complete
       ↓        ↓           ↓
     error ←────────────────
    """

    WIPING = "wiping"
    COPYING = "copying"
    CONFIGURING = "configuring"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def order(self) -> int:
        return _FIRMWARE_ORDER[self]

    @property
    def is_terminal(self) -> bool:
        return self in (FirmwareStage.COMPLETE, FirmwareStage.ERROR)


class TherapyStage(str, Enum):
    """Per-device therapy profile configuration stages.

    State transitions:
    connecting → sending → rebooting → complete
         ↓          ↓          ↓
       error ←─────────────────
    """

    CONNECTING = "connecting"
    SENDING = "sending"
    REBOOTING = "rebooting"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def order(self) -> int:
        return _THERAPY_ORDER[self]

    @property
    def is_terminal(self) -> bool:
        return self in (TherapyStage.COMPLETE, TherapyStage.ERROR)


class InstallPhase(str, Enum):
    """Batch-level phases of one installation run."""

    IDLE = "idle"
    VALIDATING = "validating"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    COMPLETE = "complete"
    FAILED = "failed"


# error shares the top rank so it is reachable from any stage
_FIRMWARE_ORDER = {
    FirmwareStage.WIPING: 0,
    FirmwareStage.COPYING: 1,
    FirmwareStage.CONFIGURING: 2,
    FirmwareStage.COMPLETE: 3,
    FirmwareStage.ERROR: 3,
}

_THERAPY_ORDER = {
    TherapyStage.CONNECTING: 0,
    TherapyStage.SENDING: 1,
    TherapyStage.REBOOTING: 2,
    TherapyStage.COMPLETE: 3,
    TherapyStage.ERROR: 3,
}
