"""Discord relay notifications for File Distributor.

Posts startup, shutdown and per-batch result messages to a Discord relay
service.  Notification failures are logged and swallowed; they never
change the outcome of a distribution.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from file_distributor import __app_name__, __version__
from file_distributor.config import DiscordSettings
from file_distributor.models import DistributionResult, utcnow

logger = logging.getLogger(__name__)

COLOR_SUCCESS = 5763719  # green
COLOR_FAILURE = 15548997  # red
COLOR_INFO = 3447003  # blue

_FIELD_LIMIT = 1000


def format_bytes(size: float) -> str:
    """Return *size* in B/KB/MB/GB with one decimal place."""
    units = ["B", "KB", "MB", "GB"]
    order = 0
    while size >= 1024 and order < len(units) - 1:
        order += 1
        size /= 1024
    return f"{size:.1f} {units[order]}"


def _truncate(text: str) -> str:
    if len(text) > _FIELD_LIMIT:
        return text[: _FIELD_LIMIT - 3] + "..."
    return text


def make_http_client(timeout: httpx.Timeout | None = None) -> httpx.Client:
    t = timeout or httpx.Timeout(connect=5.0, read=15.0, write=15.0, pool=5.0)
    return httpx.Client(
        timeout=t,
        headers={"User-Agent": f"file-distributor/{__version__}"},
    )


def build_result_embed(result: DistributionResult) -> dict[str, Any]:
    """Build the Discord embed describing one distribution."""
    status = "SUCCESS" if result.all_successful else "PARTIAL FAILURE"
    color = COLOR_SUCCESS if result.all_successful else COLOR_FAILURE

    file_list = "\n".join(
        f"- `{f.relative_path}` ({format_bytes(f.file_size)})" for f in result.files
    )
    server_status = "\n".join(
        f"- {r.target_name} ({r.duration.total_seconds():.1f}s)"
        if r.success
        else f"- {r.target_name} FAILED: {r.error_message}"
        for r in result.server_results
    )
    duration = f"{result.total_duration.total_seconds():.1f}s"

    return {
        "title": f"File Distribution: {status}",
        "color": color,
        "fields": [
            {"name": "Files", "value": _truncate(file_list) or "-", "inline": False},
            {
                "name": "Servers",
                "value": f"{result.success_count}/{result.total_servers} successful",
                "inline": True,
            },
            {"name": "Duration", "value": duration, "inline": True},
            {
                "name": "Data Transferred",
                "value": format_bytes(result.total_bytes_transferred),
                "inline": True,
            },
            {"name": "Server Details", "value": _truncate(server_status) or "-", "inline": False},
        ],
        "timestamp": utcnow().isoformat(),
    }


class DiscordNotifier:
    """Send notifications through the Discord relay.

    Parameters
    ----------
    settings : DiscordSettings
        Relay URL, shared secret and channel ids.
    client : httpx.Client, optional
        Injected for tests; otherwise one is created and owned here.
    """

    def __init__(self, settings: DiscordSettings, client: httpx.Client | None = None):
        self._settings = settings
        self._owns_client = client is None
        self._client = client or make_http_client()

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ---- public notifications ----

    def notify_distribution_result(self, result: DistributionResult) -> None:
        """Report a finished distribution, subject to the success/failure toggles."""
        s = self._settings
        if not s.enabled:
            return
        if result.all_successful and not s.notify_on_success:
            return
        if not result.all_successful and not s.notify_on_failure:
            return
        try:
            self._send(None, [build_result_embed(result)])
            logger.debug("Discord notification sent")
        except Exception:
            logger.exception("Failed to send Discord notification")

    def notify_startup(self, watch_directory: str, server_count: int) -> None:
        if not self._settings.enabled:
            return
        embed = {
            "title": f"{__app_name__} Started",
            "color": COLOR_INFO,
            "fields": [
                {"name": "Watch Directory", "value": f"`{watch_directory}`", "inline": True},
                {"name": "Target Servers", "value": str(server_count), "inline": True},
            ],
            "timestamp": utcnow().isoformat(),
        }
        try:
            self._send(None, [embed])
        except Exception:
            logger.exception("Failed to send startup notification")

    def notify_shutdown(self) -> None:
        if not self._settings.enabled:
            return
        try:
            self._send(f"{__app_name__} shutting down", None)
        except Exception:
            logger.exception("Failed to send shutdown notification")

    # ---- transport ----

    def _send(self, content: str | None, embeds: list[dict[str, Any]] | None) -> None:
        s = self._settings
        channels = s.all_channel_ids()
        if not s.relay_url or not channels:
            logger.warning("Discord relay not configured")
            return

        for channel_id in channels:
            payload = {"channelId": channel_id, "content": content or "", "embeds": embeds}
            try:
                response = self._client.post(
                    s.relay_url,
                    json=payload,
                    headers={"X-Relay-Auth": s.auth_secret},
                )
            except httpx.HTTPError as exc:
                logger.warning("Discord relay unreachable for channel %s: %s", channel_id, exc)
                continue
            if not response.is_success:
                logger.warning(
                    "Discord relay returned %d for channel %s: %s",
                    response.status_code, channel_id, response.text[:500],
                )
