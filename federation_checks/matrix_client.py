from __future__ import annotations

import itertools
import json
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from federation_checks.errors import CollaboratorError, LoginError, SendError


CLIENT_API_PREFIX = "/_matrix/client/v3"
REQUEST_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True)
class MatrixSession:
    homeserver_url: str
    user_id: str
    access_token: str = field(repr=False)
    device_id: str | None = None

    def url(self, path: str) -> str:
        return f"{self.homeserver_url.rstrip('/')}{CLIENT_API_PREFIX}{path}"

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


@dataclass(frozen=True)
class RoomMetadata:
    alias: str | None
    title: str | None


def _room_path(room_id: str) -> str:
    return quote(str(room_id), safe="")


def _redact(text: str, secret: str | None) -> str:
    if secret:
        return text.replace(secret, "<redacted>")
    return text


def _error_summary(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"status_code={resp.status_code}"
    if isinstance(data, dict) and (data.get("errcode") or data.get("error")):
        return f"status_code={resp.status_code} errcode={data.get('errcode')} error={data.get('error')}"
    return f"status_code={resp.status_code}"


def _json_object(resp: httpx.Response, *, what: str) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise CollaboratorError(f"{what}: response is not JSON") from exc
    if not isinstance(data, dict):
        raise CollaboratorError(f"{what}: response is not a JSON object")
    return data


async def login(
    client: httpx.AsyncClient,
    homeserver_url: str,
    username: str,
    password: str,
) -> MatrixSession:
    """Password login; returns the session used by every later call."""
    url = f"{homeserver_url.rstrip('/')}{CLIENT_API_PREFIX}/login"
    payload = {
        "type": "m.login.password",
        "identifier": {"type": "m.id.user", "user": username},
        "password": password,
        "initial_device_display_name": "federation-monitor",
    }
    try:
        resp = await client.post(url, json=payload, timeout=REQUEST_TIMEOUT_SECONDS)
    except httpx.HTTPError as exc:
        raise CollaboratorError(_redact(f"login: {type(exc).__name__}: {exc}", password)) from exc

    if resp.status_code in (401, 403):
        raise LoginError(f"login rejected: {_error_summary(resp)}")
    if not resp.is_success:
        raise CollaboratorError(f"login failed: {_error_summary(resp)}")

    data = _json_object(resp, what="login")
    token = data.get("access_token")
    if not isinstance(token, str) or not token:
        raise CollaboratorError("login: response has no access_token")
    user_id = data.get("user_id")
    device_id = data.get("device_id")
    return MatrixSession(
        homeserver_url=homeserver_url,
        user_id=str(user_id or username),
        access_token=token,
        device_id=str(device_id) if device_id else None,
    )


class MatrixRoomDirectory:
    """
    Room listing, membership, metadata and messaging against a logged-in session.

    Every failure is raised as CollaboratorError (SendError for messages);
    callers decide what is recoverable.
    """

    def __init__(self, client: httpx.AsyncClient, session: MatrixSession) -> None:
        self._client = client
        self._session = session
        self._txn_counter = itertools.count(1)
        self._txn_prefix = f"fm{int(time.time() * 1000)}"

    async def _get(self, path: str, *, what: str) -> httpx.Response:
        try:
            return await self._client.get(
                self._session.url(path),
                headers=self._session.headers(),
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as exc:
            msg = _redact(f"{what}: {type(exc).__name__}: {exc}", self._session.access_token)
            raise CollaboratorError(msg) from exc

    async def list_joined_rooms(self) -> list[str]:
        resp = await self._get("/joined_rooms", what="joined_rooms")
        if not resp.is_success:
            raise CollaboratorError(f"joined_rooms: {_error_summary(resp)}")
        data = _json_object(resp, what="joined_rooms")
        rooms = data.get("joined_rooms")
        if not isinstance(rooms, list):
            raise CollaboratorError("joined_rooms: missing 'joined_rooms' list")
        return [str(r) for r in rooms if isinstance(r, str) and r]

    async def list_room_members(self, room_id: str) -> list[str]:
        what = f"joined_members room={room_id}"
        resp = await self._get(f"/rooms/{_room_path(room_id)}/joined_members", what=what)
        if not resp.is_success:
            raise CollaboratorError(f"{what}: {_error_summary(resp)}")
        data = _json_object(resp, what=what)
        joined = data.get("joined")
        if not isinstance(joined, dict):
            raise CollaboratorError(f"{what}: missing 'joined' mapping")
        return [str(user_id) for user_id in joined.keys()]

    async def _state_field(self, room_id: str, event_type: str, key: str) -> str | None:
        what = f"state {event_type} room={room_id}"
        resp = await self._get(f"/rooms/{_room_path(room_id)}/state/{event_type}", what=what)
        if resp.status_code == 404:
            # Room simply has no such state event.
            return None
        if not resp.is_success:
            raise CollaboratorError(f"{what}: {_error_summary(resp)}")
        data = _json_object(resp, what=what)
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()

    async def get_room_metadata(self, room_id: str) -> RoomMetadata:
        """
        Canonical alias and name of a room; a field is None when the room does not set it.
        Transport errors and unexpected statuses raise CollaboratorError.
        """
        alias = await self._state_field(room_id, "m.room.canonical_alias", "alias")
        title = await self._state_field(room_id, "m.room.name", "name")
        return RoomMetadata(alias=alias, title=title)

    async def send_text(self, room_id: str, text: str) -> str:
        txn_id = f"{self._txn_prefix}.{next(self._txn_counter)}"
        url = self._session.url(f"/rooms/{_room_path(room_id)}/send/m.room.message/{quote(txn_id, safe='')}")
        try:
            resp = await self._client.put(
                url,
                headers=self._session.headers(),
                json={"msgtype": "m.text", "body": text},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as exc:
            msg = _redact(f"send room={room_id}: {type(exc).__name__}: {exc}", self._session.access_token)
            raise SendError(msg) from exc
        if not resp.is_success:
            raise SendError(f"send room={room_id}: {_error_summary(resp)}")
        try:
            data = resp.json()
        except ValueError:
            data = {}
        return str(data.get("event_id") or "") if isinstance(data, dict) else ""


def redact_session(session: MatrixSession) -> str:
    return json.dumps({"user_id": session.user_id, "device_id": session.device_id}, ensure_ascii=False)
