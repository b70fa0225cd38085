from __future__ import annotations

import json
import os
import urllib.error
import urllib.parse
import urllib.request


class TokenCheckError(RuntimeError):
    pass


DEFAULT_CHECK_TOKEN_URL = "https://auth.fit.cvut.cz/oauth/oauth/check_token"


def _check_token_url() -> str:
    return (os.environ.get("OAUTH_CHECK_TOKEN_URL") or DEFAULT_CHECK_TOKEN_URL).strip()


def resolve_token_username(access_token: str, timeout: float = 10.0) -> str:
    token = (access_token or "").strip()
    if not token:
        raise TokenCheckError("Access token is empty")
    query = urllib.parse.urlencode({"token": token})
    request = urllib.request.Request(
        url=f"{_check_token_url()}?{query}",
        headers={"Authorization": f"Bearer {token}"},
        data=b"",
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            if response.status != 200:
                raise TokenCheckError(f"Token check returned status {response.status}")
            payload = json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        raise TokenCheckError(f"Token check HTTP error: {exc.code}") from exc
    except urllib.error.URLError as exc:
        raise TokenCheckError(f"Token check connection error: {exc.reason}") from exc
    except json.JSONDecodeError as exc:
        raise TokenCheckError("Token check returned invalid JSON") from exc

    username = str(payload.get("user_name") or "").strip() if isinstance(payload, dict) else ""
    if not username:
        raise TokenCheckError("Token check payload has no user_name")
    return username
