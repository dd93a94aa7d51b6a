from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from federation_checks.config import MonitorConfig, load_config
from federation_checks.errors import CollaboratorError, ConfigError, LoginError
from federation_checks.matrix_client import MatrixRoomDirectory, login, redact_session
from federation_checks.sweep import RoomDirectory, SweepReport, sweep_room


LOGGER = logging.getLogger("federation-monitor")

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 2


@dataclass
class CycleSummary:
    rooms_total: int = 0
    rooms_checked: int = 0
    rooms_failed: int = 0
    reports: list[SweepReport] = field(default_factory=list)
    room_list_error: str | None = None


async def run_sweep(
    config: MonitorConfig,
    directory: RoomDirectory,
    http_client: httpx.AsyncClient,
    *,
    stop_event: asyncio.Event | None = None,
) -> CycleSummary:
    """
    One pass over every joined room except the log room.

    A failing room is logged and skipped; a failing room list abandons the cycle.
    When stop_event is set the sweep ends after the room in progress.
    """
    summary = CycleSummary()
    try:
        rooms = await config.retry.call(
            directory.list_joined_rooms,
            retry_on=(CollaboratorError,),
            description="Joined rooms fetch",
        )
    except CollaboratorError as exc:
        summary.room_list_error = str(exc)
        LOGGER.error("Joined rooms fetch failed; skipping cycle error=%s", exc)
        return summary

    monitored = [room_id for room_id in rooms if room_id != config.log_room]
    summary.rooms_total = len(monitored)
    for room_id in monitored:
        if stop_event is not None and stop_event.is_set():
            LOGGER.info("Shutdown requested; ending sweep early remaining_from=%s", room_id)
            break
        try:
            report = await sweep_room(room_id, directory, http_client, config)
        except Exception as exc:
            summary.rooms_failed += 1
            LOGGER.error("Room sweep failed room=%s error=%s: %s", room_id, type(exc).__name__, exc)
            continue
        if report is None:
            continue
        summary.rooms_checked += 1
        summary.reports.append(report)
    return summary


async def _wait_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to `seconds`; True if stop_event fired first."""
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, seconds))
    except asyncio.TimeoutError:
        return False
    return True


async def run_loop(
    config: MonitorConfig,
    directory: RoomDirectory,
    http_client: httpx.AsyncClient,
    *,
    once: bool = False,
    stop_event: asyncio.Event | None = None,
) -> int:
    stop = stop_event if stop_event is not None else asyncio.Event()

    if once:
        LOGGER.info("Running single sweep")
        await run_sweep(config, directory, http_client, stop_event=stop)
        return EXIT_OK

    while True:
        if await _wait_or_stop(stop, config.interval_seconds):
            LOGGER.info("Shutdown requested; leaving scheduler loop")
            return EXIT_OK

        started = time.monotonic()
        LOGGER.info("Running sweep cycle")
        summary = await run_sweep(config, directory, http_client, stop_event=stop)
        LOGGER.info(
            "Sweep complete elapsed_seconds=%s rooms=%s checked=%s failed=%s reports_with_failures=%s",
            round(time.monotonic() - started, 3),
            summary.rooms_total,
            summary.rooms_checked,
            summary.rooms_failed,
            sum(1 for r in summary.reports if r.failures),
        )


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform/loop; KeyboardInterrupt still applies.
            LOGGER.debug("Signal handler unavailable signal=%s", sig)


async def run(config_path: Path, *, once: bool) -> int:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        LOGGER.error("Invalid configuration path=%s error=%s", config_path, exc)
        return EXIT_STARTUP_FAILURE

    LOGGER.info(
        "Configuration loaded homeserver=%s username=%s log_room=%s interval_seconds=%s",
        config.homeserver_url,
        config.username,
        config.log_room,
        config.interval_seconds,
    )

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    async with httpx.AsyncClient(verify=config.verify_tls) as http_client:
        try:
            session = await config.retry.call(
                lambda: login(http_client, config.homeserver_url, config.username, config.password),
                retry_on=(CollaboratorError,),
                fatal=(LoginError,),
                description="Login",
            )
        except LoginError as exc:
            LOGGER.error("Login rejected username=%s error=%s", config.username, exc)
            return EXIT_STARTUP_FAILURE
        except CollaboratorError as exc:
            LOGGER.error("Login failed username=%s error=%s", config.username, exc)
            return EXIT_STARTUP_FAILURE

        LOGGER.info("Logged in session=%s", redact_session(session))
        directory = MatrixRoomDirectory(http_client, session)
        return await run_loop(config, directory, http_client, once=once, stop_event=stop_event)


def main() -> int:
    parser = argparse.ArgumentParser(description="Matrix federation reachability monitor")
    parser.add_argument(
        "--config",
        default=os.getenv("FEDERATION_MONITOR_CONFIG", "config.yaml"),
        help="Path to YAML config",
    )
    parser.add_argument("--once", action="store_true", help="Run one sweep immediately and exit")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # Access tokens travel in headers and login bodies; keep transport logs quiet.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return asyncio.run(run(Path(args.config), once=bool(args.once)))


if __name__ == "__main__":
    raise SystemExit(main())
