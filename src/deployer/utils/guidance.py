"""Troubleshooting guidance for device deployment failures."""

from typing import Optional

from pydantic import BaseModel


class ErrorGuidance(BaseModel):
    """Operator-facing explanation for a failure."""

    title: str
    description: str
    resolution_steps: list[str]


ERROR_GUIDANCE: dict[str, ErrorGuidance] = {
    "DEVICE_NOT_FOUND": ErrorGuidance(
        title="Device Not Found",
        description="The selected device is no longer connected or accessible.",
        resolution_steps=[
            "Check that the device is properly connected via USB",
            "Ensure the device is mounted and visible in your file manager",
            "Try unplugging and reconnecting the device",
            "Refresh the device list and select the device again",
        ],
    ),
    "DEVICE_NOT_WRITABLE": ErrorGuidance(
        title="Device Not Writable",
        description="Cannot write to the device due to permissions or write protection.",
        resolution_steps=[
            "Check if the device has a physical write-protect switch",
            "Ensure the device is not mounted as read-only",
            "Try ejecting and reconnecting the device",
        ],
    ),
    "INSUFFICIENT_SPACE": ErrorGuidance(
        title="Insufficient Disk Space",
        description="The device does not have enough free space for the firmware.",
        resolution_steps=[
            "Free up space on the device by deleting unnecessary files",
            "Typical firmware requires ~10 MB of free space",
        ],
    ),
    "PERMISSION_DENIED": ErrorGuidance(
        title="Permission Denied",
        description="You do not have permission to access or modify the device.",
        resolution_steps=[
            "Grant the deployer full disk access on the host",
            "Ensure you have admin/root privileges if required",
        ],
    ),
    "NETWORK_ERROR": ErrorGuidance(
        title="Network Error",
        description="Failed to reach the firmware server or the device agent.",
        resolution_steps=[
            "Check your internet connection",
            "Verify the release server is not blocked by a firewall",
            "Check that the device agent is running",
        ],
    ),
    "FIRMWARE_DOWNLOAD_FAILED": ErrorGuidance(
        title="Firmware Download Failed",
        description="Could not download or extract the firmware file.",
        resolution_steps=[
            "Check your internet connection",
            "Ensure you have enough disk space for the download",
            "Try selecting a different firmware version",
        ],
    ),
    "COPY_FAILED": ErrorGuidance(
        title="File Copy Failed",
        description="Failed to copy firmware files to the device.",
        resolution_steps=[
            "Ensure the device is still connected",
            "Check that the device has enough free space",
            "Close any programs that might be accessing the device",
        ],
    ),
    "CONFIG_WRITE_FAILED": ErrorGuidance(
        title="Configuration Write Failed",
        description="Failed to write configuration file to the device.",
        resolution_steps=[
            "Ensure the device is still connected",
            "Check write permissions on the device",
            "Verify the device is not full",
        ],
    ),
    "BOOTLOADER_FAILED": ErrorGuidance(
        title="Bootloader Entry Failed",
        description="The device is stuck in or could not enter bootloader mode.",
        resolution_steps=[
            "Wait for the device to boot into application mode",
            "Press the reset button once to leave bootloader mode",
            "Try a different USB cable or port",
        ],
    ),
    "SERIAL_PORT_ERROR": ErrorGuidance(
        title="Serial Port Error",
        description="Cannot communicate with the device serial port.",
        resolution_steps=[
            "Check that no other application is using the serial port",
            "Try unplugging and reconnecting the device",
        ],
    ),
    "TIMEOUT": ErrorGuidance(
        title="Timeout",
        description="Device did not respond within expected time.",
        resolution_steps=[
            "The device may have disconnected - check USB connection",
            "Try resetting the device and starting over",
        ],
    ),
    "VALIDATION_FAILED": ErrorGuidance(
        title="Validation Failed",
        description="The device failed pre-flight checks or rejected the firmware.",
        resolution_steps=[
            "Ensure you are using the correct firmware for your device",
            "Review the validation errors listed for each device",
        ],
    ),
    "INVALID_FIRMWARE_FORMAT": ErrorGuidance(
        title="Invalid Firmware Format",
        description="The firmware package is not in the expected format.",
        resolution_steps=[
            "Download the firmware package again from the releases page",
            "Ensure the zip has not been modified",
        ],
    ),
}

# Checked in order; specific patterns must precede generic ones.
_PATTERNS: list[tuple[tuple[str, ...], str]] = [
    (("missing file", "manifest.json", "firmware.bin", "firmware.dat"), "INVALID_FIRMWARE_FORMAT"),
    (("not found", "does not exist"), "DEVICE_NOT_FOUND"),
    (("not writable", "read-only"), "DEVICE_NOT_WRITABLE"),
    (("insufficient", "no space", "disk space"), "INSUFFICIENT_SPACE"),
    (("permission denied", "access denied"), "PERMISSION_DENIED"),
    (("network", "connection"), "NETWORK_ERROR"),
    (("download", "fetch"), "FIRMWARE_DOWNLOAD_FAILED"),
    (("copy", "transfer"), "COPY_FAILED"),
    (("config",), "CONFIG_WRITE_FAILED"),
    (("bootloader", "dfu mode"), "BOOTLOADER_FAILED"),
    (("serial", "port"), "SERIAL_PORT_ERROR"),
    (("timeout", "timed out"), "TIMEOUT"),
    (("validation", "rejected"), "VALIDATION_FAILED"),
]


def get_error_guidance(error_message: str) -> Optional[ErrorGuidance]:
    """Match an error message to troubleshooting guidance.

    Args:
        error_message: Failure message as surfaced to the operator

    Returns:
        Matching ErrorGuidance, or None if no pattern applies
    """
    lower = error_message.lower()
    for needles, key in _PATTERNS:
        if any(needle in lower for needle in needles):
            return ERROR_GUIDANCE[key]
    return None


def format_validation_errors(errors: list[str]) -> str:
    """Render validation errors, numbering them when there are several."""
    if not errors:
        return ""
    if len(errors) == 1:
        return errors[0]
    return "\n".join(f"{idx}. {err}" for idx, err in enumerate(errors, start=1))
