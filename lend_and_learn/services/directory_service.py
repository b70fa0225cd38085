from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from typing import Any


class DirectoryError(RuntimeError):
    pass


DEFAULT_USERMAP_API_BASE_URL = "https://kosapi.fit.cvut.cz/usermap/v1"
DEFAULT_TIMEOUT_SECONDS = 20.0
DIRECTORY_LOGGER = logging.getLogger("lend_and_learn.directory")


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _to_profile(item: Any) -> dict[str, str]:
    if not isinstance(item, dict):
        raise DirectoryError("Directory payload is not an object")
    username = str(item.get("username") or "").strip()
    if not username:
        raise DirectoryError("Directory payload has no username")
    return {
        "username": username,
        "firstName": str(item.get("firstName") or "").strip(),
        "lastName": str(item.get("lastName") or "").strip(),
        "preferredEmail": str(item.get("preferredEmail") or "").strip(),
    }


class UsermapDirectory:
    """Client for the institutional people directory (usermap API)."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        raw_base = base_url or os.environ.get("USERMAP_API_BASE_URL") or DEFAULT_USERMAP_API_BASE_URL
        self.base_url = raw_base.strip().rstrip("/")
        self.timeout = timeout or _env_float("DIRECTORY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)

    def _people_url(self, username: str) -> str:
        return f"{self.base_url}/people/{urllib.parse.quote(username, safe='')}"

    def fetch_profile(self, access_token: str, username: str) -> dict[str, str] | None:
        """Return ``{username, firstName, lastName, preferredEmail}`` or None on an empty answer.

        Raises :class:`DirectoryError` for transport failures, non-200 answers and
        malformed payloads.
        """
        request = urllib.request.Request(
            url=self._people_url(username),
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            method="GET",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                if response.status != 200:
                    raise DirectoryError(f"Directory API returned status {response.status}")
                body = response.read().decode("utf-8").strip()
        except urllib.error.HTTPError as exc:
            DIRECTORY_LOGGER.warning("directory lookup failed | username=%s | status=%s", username, exc.code)
            raise DirectoryError(f"Directory API HTTP error: {exc.code}") from exc
        except urllib.error.URLError as exc:
            DIRECTORY_LOGGER.warning("directory lookup failed | username=%s | reason=%s", username, exc.reason)
            raise DirectoryError(f"Directory API connection error: {exc.reason}") from exc

        if not body:
            return None
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise DirectoryError("Directory API returned invalid JSON") from exc
        if payload is None:
            return None
        return _to_profile(payload)
