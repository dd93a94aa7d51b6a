from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol

import httpx

from federation_checks.config import MonitorConfig
from federation_checks.errors import DelegationError, SendError
from federation_checks.identifiers import extract_domain
from federation_checks.matrix_client import RoomMetadata
from federation_checks.probe import probe_server
from federation_checks.resolver import resolve_server


LOGGER = logging.getLogger("federation-monitor")

UNKNOWN_TITLE = "(unknown title)"


class RoomDirectory(Protocol):
    async def list_joined_rooms(self) -> list[str]: ...

    async def get_room_metadata(self, room_id: str) -> RoomMetadata: ...

    async def list_room_members(self, room_id: str) -> list[str]: ...

    async def send_text(self, room_id: str, text: str) -> str: ...


class CheckStatus(str, Enum):
    OK = "ok"
    FAILED_DELEGATION = "failed_delegation"
    FAILED_UNREACHABLE = "failed_unreachable"


@dataclass(frozen=True)
class CheckResult:
    domain: str
    status: CheckStatus
    target: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is CheckStatus.OK

    @property
    def status_text(self) -> str:
        if self.status is CheckStatus.OK:
            return "OK"
        if self.status is CheckStatus.FAILED_DELEGATION:
            return f"Failed (Delegation: {self.reason or 'unknown'})"
        return "Failed (Unreachable)"

    @property
    def line(self) -> str:
        return f"{self.domain} - {self.status_text}"


@dataclass(frozen=True)
class RoomSnapshot:
    room_id: str
    alias: str
    title: str
    domains: tuple[str, ...]

    @property
    def description(self) -> str:
        return f"{self.alias} - {self.title}"


@dataclass(frozen=True)
class SweepReport:
    room: RoomSnapshot
    results: tuple[CheckResult, ...]
    sent: bool = False

    @property
    def failures(self) -> list[CheckResult]:
        return [r for r in self.results if not r.ok]

    @property
    def status_lines(self) -> list[str]:
        return [r.line for r in self.results]

    @property
    def failure_lines(self) -> list[str]:
        return [r.line for r in self.failures]

    @property
    def message(self) -> str:
        return build_report_message(self.room, self.results)


def build_report_message(room: RoomSnapshot, results: Iterable[CheckResult]) -> str:
    items = list(results)
    failed = [r for r in items if not r.ok]
    if not failed:
        return f"All servers in {room.description} are OK ({len(items)} checked)"
    lines = [f"Federation check failed for {room.description}:"]
    lines.extend(r.line for r in failed)
    return "\n".join(lines)


def distinct_domains(member_ids: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    for member in member_ids:
        domain = extract_domain(member)
        if not domain:
            LOGGER.debug("Skipping member without server name member=%s", member)
            continue
        seen.add(domain)
    return tuple(sorted(seen))


async def fetch_room_labels(directory: RoomDirectory, room_id: str) -> tuple[str, str]:
    try:
        meta = await directory.get_room_metadata(room_id)
    except Exception as exc:
        LOGGER.warning(
            "Room metadata lookup failed; using fallbacks room=%s error=%s: %s",
            room_id,
            type(exc).__name__,
            exc,
        )
        return room_id, UNKNOWN_TITLE
    return (meta.alias or room_id), (meta.title or UNKNOWN_TITLE)


async def check_domain(domain: str, http_client: httpx.AsyncClient, config: MonitorConfig) -> CheckResult:
    """Resolve then probe one server name."""
    try:
        target = await resolve_server(domain, http_client, timeout_seconds=config.lookup_timeout_seconds)
    except DelegationError as exc:
        return CheckResult(domain=domain, status=CheckStatus.FAILED_DELEGATION, reason=str(exc))

    reachable = await probe_server(target, http_client, timeout_seconds=config.probe_timeout_seconds)
    if reachable:
        return CheckResult(domain=domain, status=CheckStatus.OK, target=target)
    return CheckResult(domain=domain, status=CheckStatus.FAILED_UNREACHABLE, target=target)


async def check_domains(
    domains: Iterable[str],
    http_client: httpx.AsyncClient,
    config: MonitorConfig,
) -> list[CheckResult]:
    sem = asyncio.Semaphore(max(1, int(config.check_concurrency)))

    async def _safe_check(domain: str) -> CheckResult:
        async with sem:
            try:
                return await check_domain(domain, http_client, config)
            except Exception as exc:
                err = f"{type(exc).__name__}: {exc}"
                LOGGER.exception("Domain check crashed domain=%s error=%s", domain, err)
                return CheckResult(domain=domain, status=CheckStatus.FAILED_DELEGATION, reason=err)

    out = await asyncio.gather(*(_safe_check(d) for d in domains))
    return sorted(out, key=lambda r: r.domain)


async def sweep_room(
    room_id: str,
    directory: RoomDirectory,
    http_client: httpx.AsyncClient,
    config: MonitorConfig,
) -> SweepReport | None:
    """
    Check every server participating in a room and post one report to the log room.

    Returns None for the log room itself, which is never checked. A failing member
    list raises CollaboratorError so the caller can move on to the next room.
    """
    if room_id == config.log_room:
        LOGGER.debug("Skipping log room room=%s", room_id)
        return None

    alias, title = await fetch_room_labels(directory, room_id)

    members = await directory.list_room_members(room_id)

    room = RoomSnapshot(room_id=room_id, alias=alias, title=title, domains=distinct_domains(members))
    LOGGER.info(
        "Checking room room=%s alias=%s members=%s servers=%s",
        room_id,
        alias,
        len(members),
        len(room.domains),
    )

    results = tuple(await check_domains(room.domains, http_client, config))
    report = SweepReport(room=room, results=results)
    for line in report.status_lines:
        LOGGER.info("Status room=%s %s", room_id, line)

    try:
        event_id = await directory.send_text(config.log_room, report.message)
    except SendError as exc:
        LOGGER.error("Failed to send report room=%s log_room=%s error=%s", room_id, config.log_room, exc)
        return report

    LOGGER.info(
        "Report sent room=%s failures=%s event_id=%s",
        room_id,
        len(report.failures),
        event_id or None,
    )
    return SweepReport(room=room, results=results, sent=True)
