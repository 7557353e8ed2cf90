"""Raw HTTP access to the HiLink ``/api`` tree.

Every request to a modem goes through ``get``/``post`` here, which is also
the only place ``requests`` exceptions are turned into ``DeviceUnreachable``.
HTTP status codes are not checked: HiLink answers errors with 200 and an
``<error>`` body, and some firmwares use odd status codes for valid data.
"""

import logging
import re

import requests

from ..errors import DeviceUnreachable

log = logging.getLogger("modemctl.hilink.transport")

TOKEN_HEADER = "__RequestVerificationToken"

_SESSION_COOKIE_RE = re.compile(r"SessionID=([^;,\s]+)")


def api_url(ip: str, path: str) -> str:
    return f"http://{ip}/api/{path.lstrip('/')}"


def _headers(cookie, token, extra=None):
    headers = {}
    if cookie:
        headers["Cookie"] = cookie
    if token:
        headers[TOKEN_HEADER] = token
    if extra:
        headers.update(extra)
    return headers


def get(ip: str, path: str, cookie: str | None = None, token: str | None = None,
        timeout: float = 10) -> requests.Response:
    """GET ``/api/<path>`` on the modem."""
    url = api_url(ip, path)
    try:
        r = requests.get(url, headers=_headers(cookie, token), timeout=timeout)
    except requests.Timeout as e:
        raise DeviceUnreachable(f"Timeout after {timeout}s: GET {url}") from e
    except requests.RequestException as e:
        raise DeviceUnreachable(f"GET {url} failed: {e}") from e
    log.debug("GET %s -> %s %s", path, r.status_code, (r.text or "")[:200])
    return r


def post(ip: str, path: str, body: str, cookie: str | None = None,
         token: str | None = None, timeout: float = 10) -> requests.Response:
    """POST an XML body to ``/api/<path>`` on the modem."""
    url = api_url(ip, path)
    headers = _headers(cookie, token, {"Content-Type": "application/xml"})
    try:
        r = requests.post(url, data=body.encode("utf-8"), headers=headers, timeout=timeout)
    except requests.Timeout as e:
        raise DeviceUnreachable(f"Timeout after {timeout}s: POST {url}") from e
    except requests.RequestException as e:
        raise DeviceUnreachable(f"POST {url} failed: {e}") from e
    log.debug("POST %s -> %s %s", path, r.status_code, (r.text or "")[:200])
    return r


def cookie_from_response(response) -> str:
    """Return 'SessionID=<value>' from the response's Set-Cookie header, or ""."""
    raw = response.headers.get("Set-Cookie") or ""
    m = _SESSION_COOKIE_RE.search(raw)
    return f"SessionID={m.group(1)}" if m else ""


def token_from_response(response) -> str:
    """Return the verification token a response hands back, or "".

    Some firmwares send several '#'-separated tokens; the first one is the
    next usable token.
    """
    raw = response.headers.get(TOKEN_HEADER) or ""
    return raw.split("#")[0].strip()
