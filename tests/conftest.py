"""Shared fixtures: an in-memory HiLink device behind patched requests calls."""

import threading
import time
from unittest.mock import patch

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from modemctl.hilink.auth import encode_password
from modemctl.hilink.session import ModemConfig, SessionManager


class FakeResponse:
    def __init__(self, text="", headers=None, status_code=200):
        self.text = text
        self.headers = CaseInsensitiveDict(headers or {})
        self.status_code = status_code


def _xml(inner):
    return f'<?xml version="1.0" encoding="UTF-8"?>\n<response>{inner}</response>'


def _error(code):
    return f'<?xml version="1.0" encoding="UTF-8"?>\n<error><code>{code}</code><message></message></error>'


class FakeHiLink:
    """Minimal HiLink firmware: tokens are single use, sessions need a login.

    Knobs used by tests:
        wan_ips          WAN addresses handed out, advanced by each PLMN scan
        session_via      "cookie" (Set-Cookie) or "sesinfo" (SesInfo field only)
        login_error      error code returned by /user/login instead of OK
        login_error_after_scan  same, only once a scan has happened
        unreachable      set of API paths that raise ConnectionError
        error_paths      {path: code} answered with an <error> envelope
        expire_next      number of upcoming authenticated calls answered 125002
        login_delay      seconds /user/login takes
    """

    def __init__(self, ip="192.168.8.1", username="admin", password="secret"):
        self.ip = ip
        self.username = username
        self.password = password
        self.device_name = "B312-926"
        self.wan_ips = ["10.0.0.1"]
        self.session_via = "cookie"
        self.login_error = None
        self.login_error_after_scan = None
        self.unreachable = set()
        self.error_paths = {}
        self.expire_next = 0
        self.login_delay = 0
        self.plmn_body = _xml(
            "<Networks><Network><FullName>Telkomsel</FullName></Network>"
            "<Network><FullName>XL Axiata</FullName></Network></Networks>"
        )

        self.calls = []
        self.login_count = 0
        self.scan_count = 0
        self.login_pairs = []
        self._counter = 0
        self._tokens = set()
        self._authed = set()
        self._lock = threading.Lock()

    @property
    def wan_ip(self):
        return self.wan_ips[min(self.scan_count, len(self.wan_ips) - 1)]

    def _next(self, prefix):
        self._counter += 1
        return f"{prefix}{self._counter}"

    def _path(self, url):
        host = url.split("://", 1)[1].split("/", 1)[0]
        if host != self.ip:
            raise requests.ConnectionError(f"No route to host {host}")
        return url.split("/api/", 1)[1]

    def _session_of(self, headers):
        return (headers or {}).get("Cookie", "")

    def _take_token(self, headers):
        token = (headers or {}).get("__RequestVerificationToken")
        if token in self._tokens:
            self._tokens.discard(token)
            return True
        return False

    def _issue_token(self):
        token = self._next("tok")
        self._tokens.add(token)
        return token

    # ── requests.get / requests.post replacements ──

    def get(self, url, headers=None, timeout=None, **kwargs):
        path = self._path(url)
        with self._lock:
            self.calls.append(("GET", path, dict(headers or {}), timeout))
            if path in self.unreachable:
                raise requests.ConnectionError(f"{path} unreachable")

            if path == "webserver/SesTokInfo":
                return self._ses_tok_info(headers)
            if path == "user/state-login":
                return FakeResponse(_xml("<State>-1</State><password_type>4</password_type>"))
            if path == "device/basic_information":
                return FakeResponse(_xml(f"<devicename>{self.device_name}</devicename>"))
            if path == "monitoring/traffic-statistics" and not headers:
                return FakeResponse(_error(100003))

            denied = self._check_auth(headers)
            if denied:
                return denied
            if path in self.error_paths:
                return FakeResponse(_error(self.error_paths[path]))
            return self._authed_get(path)

    def post(self, url, data=None, headers=None, timeout=None, **kwargs):
        path = self._path(url)
        body = data.decode("utf-8") if isinstance(data, bytes) else (data or "")
        with self._lock:
            self.calls.append(("POST", path, dict(headers or {}), timeout))
            if path in self.unreachable:
                raise requests.ConnectionError(f"{path} unreachable")
            if path == "user/login":
                return self._login(body, headers)
            denied = self._check_auth(headers)
            if denied:
                return denied
            if path in self.error_paths:
                return FakeResponse(_error(self.error_paths[path]))
            if path == "device/control":
                return FakeResponse(_xml("OK"))
            return FakeResponse(_error(100002))

    # ── handlers ──

    def _ses_tok_info(self, headers):
        session = self._session_of(headers) or f"SessionID={self._next('sess')}"
        token = self._issue_token()
        if self.session_via == "sesinfo":
            raw = session.split("=", 1)[1]
            return FakeResponse(_xml(f"<SesInfo>{raw}</SesInfo><TokInfo>{token}</TokInfo>"))
        return FakeResponse(
            _xml(f"<SesInfo>{session}</SesInfo><TokInfo>{token}</TokInfo>"),
            headers={"Set-Cookie": f"{session};path=/;HttpOnly"},
        )

    def _login(self, body, headers):
        if not self._take_token(headers):
            return FakeResponse(_error(125002))
        token = headers["__RequestVerificationToken"]
        if self.login_delay:
            time.sleep(self.login_delay)
        code = self.login_error
        if self.login_error_after_scan and self.scan_count:
            code = self.login_error_after_scan
        if code:
            return FakeResponse(_error(code) if code != 108007 else
                                '<error><code>108007</code><waittime>5</waittime></error>')
        expected = encode_password(self.username, self.password, token)
        if f"<Password>{expected}</Password>" not in body or \
                f"<Username>{self.username}</Username>" not in body:
            return FakeResponse(_error(108006))
        self.login_count += 1
        session = f"SessionID={self._next('auth')}"
        next_token = self._issue_token()
        self._authed.add(session)
        self.login_pairs.append((session, next_token))
        headers_out = {"__RequestVerificationToken": next_token}
        if self.session_via == "cookie":
            headers_out["Set-Cookie"] = f"{session};path=/"
        else:
            self._authed.add(self._session_of(headers))
            self.login_pairs.append((self._session_of(headers), next_token))
        return FakeResponse(_xml("OK"),
                            headers=headers_out)

    def _check_auth(self, headers):
        if self.expire_next > 0:
            self.expire_next -= 1
            self._authed.clear()
            return FakeResponse(_error(125002))
        if self._session_of(headers) not in self._authed:
            return FakeResponse(_error(100003))
        if not self._take_token(headers):
            return FakeResponse(_error(125003))
        return None

    def _authed_get(self, path):
        if path == "device/information":
            return FakeResponse(_xml(
                f"<DeviceName>{self.device_name}</DeviceName>"
                f"<SerialNumber>X1</SerialNumber><WanIPAddress>{self.wan_ip}</WanIPAddress>"
            ))
        if path == "net/current-plmn":
            return FakeResponse(_xml("<State>0</State><FullName>Telkomsel</FullName><ShortName>TSEL</ShortName>"))
        if path == "monitoring/traffic-statistics":
            return FakeResponse(_xml(
                "<CurrentDownloadRate>2048</CurrentDownloadRate><CurrentUploadRate>512</CurrentUploadRate>"
                "<TotalDownload>1073741824</TotalDownload><TotalUpload>1048576</TotalUpload>"
            ))
        if path == "monitoring/month_statistics":
            return FakeResponse(_xml(
                "<CurrentMonthDownload>1048576</CurrentMonthDownload>"
                "<CurrentMonthUpload>1048576</CurrentMonthUpload>"
            ))
        if path == "device/signal":
            return FakeResponse(_xml("<rssi>-71dBm</rssi><rsrp>-98dBm</rsrp><rsrq>-9dB</rsrq><sinr>12dB</sinr>"))
        if path == "net/plmn-list":
            self.scan_count += 1
            self._authed.clear()
            return FakeResponse(self.plmn_body)
        return FakeResponse(_error(100002))

    def paths(self, method=None):
        return [p for m, p, _, _ in self.calls if method is None or m == method]


@pytest.fixture
def fake_modem():
    device = FakeHiLink()
    with patch("modemctl.hilink.transport.requests.get", side_effect=device.get), \
            patch("modemctl.hilink.transport.requests.post", side_effect=device.post):
        yield device


@pytest.fixture
def modem_config(fake_modem):
    return ModemConfig(ip=fake_modem.ip, username=fake_modem.username, password=fake_modem.password)


@pytest.fixture
def sessions():
    return SessionManager(timeout=5)
