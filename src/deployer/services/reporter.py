"""Forwards relayed stage events to an external listener."""

import logging

import httpx

from deployer.models.events import StageEvent


class ReportService:
    """POSTs stage events to a configured report URL."""

    def __init__(self, report_url: str, timeout: float = 5.0):
        """Initialize report service.

        Args:
            report_url: Endpoint receiving one JSON StageEvent per request
            timeout: HTTP timeout in seconds
        """
        self.logger = logging.getLogger("deployer.reporter")
        self.report_url = report_url
        self.timeout = timeout

    async def report_event(self, event: StageEvent) -> None:
        """Send one event.

        Note:
            Failures are logged but not raised so reporting never blocks a
            deployment.
        """
        self.logger.debug(
            f"Reporting {event.device_path}: stage={event.stage.value}, "
            f"progress={event.progress:.0f}%"
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.report_url,
                    json=event.model_dump(mode="json"),
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning(
                f"Failed to report event to {self.report_url}: {e}. Continuing..."
            )
        except Exception as e:
            self.logger.error(f"Unexpected error reporting event: {e}", exc_info=True)
