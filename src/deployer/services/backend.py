"""Remote device operations.

``DeviceBackend`` is the collaborator boundary the orchestrator depends on:
every operation returns an ``Ok``/``Err`` result instead of raising, so
callers never have to sniff error shapes. ``FirmwareSource`` is the same
kind of boundary for release download and caching. ``HttpDeviceBackend``
implements both against the device agent that performs the actual I/O.

Agent wire format: ``POST {base_url}/api/v1.0/commands/{name}`` with a JSON
body of arguments. Plain commands answer with a ``{"code", "msg", "data"}``
envelope (code 200 on success). Streaming commands answer with NDJSON:
zero or more ``{"event": {...}}`` lines followed by one envelope line.
"""

import json
import logging
from typing import Any, Callable, Optional, Protocol, TypeVar

import httpx
from pydantic import ValidationError

from deployer.errors import error_message
from deployer.models.device import DeviceRole, FirmwareBundle, FirmwareRelease, ValidationResult
from deployer.models.events import ProfileProgress, TransferProgress
from deployer.models.result import BackendResult, Err, Ok
from deployer.models.therapy import AdvancedSettings, TherapyProfile

T = TypeVar("T")


class DeviceBackend(Protocol):
    """Remote operations executed against a connected device."""

    async def erase(self, device_path: str) -> BackendResult[None]:
        ...

    async def transfer_firmware(
        self,
        firmware_path: str,
        device_path: str,
        on_progress: Callable[[TransferProgress], None],
    ) -> BackendResult[None]:
        ...

    async def write_config(
        self, device_path: str, role: DeviceRole, config_content: str
    ) -> BackendResult[None]:
        ...

    async def rename_volume(self, device_path: str, new_name: str) -> BackendResult[None]:
        ...

    async def resolve_renamed_path(
        self, old_path: str, expected_name: str
    ) -> BackendResult[str]:
        ...

    async def apply_therapy_profile(
        self,
        device_path: str,
        profile: TherapyProfile,
        advanced_settings: Optional[AdvancedSettings],
        on_progress: Callable[[ProfileProgress], None],
    ) -> BackendResult[None]:
        ...

    async def validate_device(self, device_path: str) -> BackendResult[ValidationResult]:
        ...


class FirmwareSource(Protocol):
    """Resolves a release to a locally available bundle (download and cache)."""

    async def fetch_firmware(
        self,
        release: FirmwareRelease,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> BackendResult[FirmwareBundle]:
        ...


class HttpDeviceBackend:
    """DeviceBackend and FirmwareSource backed by the device agent HTTP API."""

    def __init__(self, base_url: str = "http://localhost:9080", timeout: float = 30.0):
        """Initialize backend client.

        Args:
            base_url: Device agent base URL (default: http://localhost:9080)
            timeout: Per-request timeout in seconds
        """
        self.logger = logging.getLogger("deployer.backend")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def command_endpoint(self, name: str) -> str:
        return f"{self.base_url}/api/v1.0/commands/{name}"

    async def erase(self, device_path: str) -> BackendResult[None]:
        return await self._invoke("erase", {"device_path": device_path})

    async def transfer_firmware(
        self,
        firmware_path: str,
        device_path: str,
        on_progress: Callable[[TransferProgress], None],
    ) -> BackendResult[None]:
        return await self._invoke_streaming(
            "transfer_firmware",
            {"firmware_path": firmware_path, "device_path": device_path},
            lambda event: TransferProgress(**event),
            on_progress,
        )

    async def write_config(
        self, device_path: str, role: DeviceRole, config_content: str
    ) -> BackendResult[None]:
        return await self._invoke(
            "write_config",
            {
                "device_path": device_path,
                "role": DeviceRole(role).value,
                "config_content": config_content,
            },
        )

    async def rename_volume(self, device_path: str, new_name: str) -> BackendResult[None]:
        return await self._invoke(
            "rename_volume", {"device_path": device_path, "new_name": new_name}
        )

    async def resolve_renamed_path(
        self, old_path: str, expected_name: str
    ) -> BackendResult[str]:
        result = await self._invoke(
            "resolve_renamed_path",
            {"old_path": old_path, "expected_name": expected_name},
        )
        if isinstance(result, Ok) and not isinstance(result.value, str):
            return Err("resolve_renamed_path returned no path")
        return result

    async def apply_therapy_profile(
        self,
        device_path: str,
        profile: TherapyProfile,
        advanced_settings: Optional[AdvancedSettings],
        on_progress: Callable[[ProfileProgress], None],
    ) -> BackendResult[None]:
        return await self._invoke_streaming(
            "apply_therapy_profile",
            {
                "device_path": device_path,
                "profile": TherapyProfile(profile).value,
                "advanced_settings": (
                    advanced_settings.model_dump(mode="json")
                    if advanced_settings is not None
                    else None
                ),
            },
            lambda event: ProfileProgress(**event),
            on_progress,
        )

    async def validate_device(self, device_path: str) -> BackendResult[ValidationResult]:
        result = await self._invoke("validate_device", {"device_path": device_path})
        if isinstance(result, Err):
            return result
        try:
            return Ok(ValidationResult(**(result.value or {})))
        except (ValidationError, TypeError) as e:
            return Err(f"Invalid validation result: {e}")

    async def fetch_firmware(
        self,
        release: FirmwareRelease,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> BackendResult[FirmwareBundle]:
        """Have the agent download (or reuse its cached copy of) a release.

        The agent streams ``{"percent": n}`` events and answers with the
        extracted directory as ``data.local_path``.
        """
        result = await self._invoke_streaming(
            "fetch_firmware",
            {
                "version": release.version,
                "download_url": release.download_url,
                "sha256": release.sha256,
            },
            lambda event: float(dict(event).get("percent", 0)),
            on_progress or (lambda percent: None),
        )
        if isinstance(result, Err):
            return result
        data = result.value if isinstance(result.value, dict) else {}
        local_path = data.get("local_path")
        if not local_path:
            return Err("fetch_firmware returned no local_path")
        return Ok(FirmwareBundle(version=release.version, local_path=local_path))

    async def _invoke(self, name: str, args: dict[str, Any]) -> BackendResult[Any]:
        """Call a plain command and translate its envelope."""
        self.logger.debug(f"Invoking {name}: {_describe(args)}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.command_endpoint(name), json=args)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            self.logger.error(f"{name} request failed: {error_message(e)}")
            return Err(f"{name} request failed: {error_message(e)}")
        except ValueError as e:
            return Err(f"Invalid response from device agent for {name}: {e}")

        return self._envelope_to_result(name, body)

    async def _invoke_streaming(
        self,
        name: str,
        args: dict[str, Any],
        parse: Callable[[Any], T],
        on_event: Callable[[T], None],
    ) -> BackendResult[Any]:
        """Call a streaming command, relaying events until the final envelope.

        Each event payload is turned into an update by ``parse``; a payload it
        rejects ends the call with Err. Errors raised by ``on_event`` propagate.
        """
        self.logger.debug(f"Invoking {name} (streaming): {_describe(args)}")
        final: Optional[dict[str, Any]] = None
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST", self.command_endpoint(name), json=args
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        line = line.strip()
                        if not line:
                            continue
                        message = json.loads(line)
                        if isinstance(message, dict) and "event" in message:
                            try:
                                update = parse(message["event"])
                            except (ValueError, TypeError) as e:
                                return Err(
                                    f"Invalid progress event from device agent for {name}: {e}"
                                )
                            on_event(update)
                        else:
                            final = message
        except httpx.HTTPError as e:
            self.logger.error(f"{name} request failed: {error_message(e)}")
            return Err(f"{name} request failed: {error_message(e)}")
        except json.JSONDecodeError as e:
            return Err(f"Invalid response from device agent for {name}: {e}")

        if final is None:
            return Err(f"{name} stream ended without a result")
        return self._envelope_to_result(name, final)

    def _envelope_to_result(self, name: str, body: Any) -> BackendResult[Any]:
        if not isinstance(body, dict) or "code" not in body:
            return Err(f"Malformed response from device agent for {name}")
        if body["code"] != 200:
            message = body.get("msg") or f"{name} failed"
            self.logger.debug(f"{name} returned code {body['code']}: {message}")
            return Err(message)
        return Ok(body.get("data"))


def _describe(args: dict[str, Any]) -> str:
    # config_content is a whole file; keep log lines short
    return ", ".join(
        f"{key}=<{len(value)} chars>" if key == "config_content" else f"{key}={value}"
        for key, value in args.items()
    )
