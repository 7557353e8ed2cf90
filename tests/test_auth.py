"""Tests for HiLink handshake, password encoding and login."""

from unittest.mock import MagicMock, patch

import pytest

from modemctl.errors import AuthFailed, DeviceUnreachable, LoginFailure, ProtocolError, TokenConsumed
from modemctl.hilink.auth import (
    LoginAttempt,
    LoginState,
    acquire_handshake,
    classify_login_error,
    encode_password,
)
from modemctl.hilink.session import ModemConfig, ModemSession, VerificationToken


class TestEncodePassword:
    def test_known_vector(self):
        expected = "YTgyNGJmZWU2ODAyYmQ4ZmE2Nzc4ZWYxNzJhOTQ3YzIyZWRmYzQwZTJlNDUyODBhYWQxM2M3MDdkMmM3ODMzZQ=="
        assert encode_password("admin", "admin", "abc") == expected

    def test_known_vector_special_chars(self):
        expected = "ODVhMWMzYWJjNTRlODJjMjRjYzgxMDk5M2Q0OTA3ZDUyMDM4YzBkZDU4M2VkZGZlMGZhMDE3ZWVjZDU1ZjYwNg=="
        assert encode_password("user", "p@ss w0rd", "TOKEN123") == expected

    def test_deterministic(self):
        assert encode_password("a", "b", "c") == encode_password("a", "b", "c")

    def test_token_changes_output(self):
        assert encode_password("admin", "admin", "t1") != encode_password("admin", "admin", "t2")

    def test_each_input_matters(self):
        base = encode_password("admin", "admin", "abc")
        assert encode_password("admin2", "admin", "abc") != base
        assert encode_password("admin", "admin2", "abc") != base


class TestHandshake:
    def test_cookie_and_token(self, fake_modem):
        hs = acquire_handshake(fake_modem.ip)
        assert hs.session.startswith("SessionID=sess")
        assert hs.token.peek().startswith("tok")
        assert not hs.token.consumed

    def test_session_from_sesinfo_only(self, fake_modem):
        fake_modem.session_via = "sesinfo"
        hs = acquire_handshake(fake_modem.ip)
        assert hs.session.startswith("SessionID=sess")
        assert hs.session.count("SessionID=") == 1

    def test_existing_cookie_reused(self, fake_modem):
        hs = acquire_handshake(fake_modem.ip, cookie="SessionID=keep")
        assert hs.session == "SessionID=keep"
        _, _, headers, _ = fake_modem.calls[-1]
        assert headers["Cookie"] == "SessionID=keep"

    def test_endpoint_unreachable(self, fake_modem):
        fake_modem.unreachable.add("webserver/SesTokInfo")
        with pytest.raises(DeviceUnreachable):
            acquire_handshake(fake_modem.ip)

    def test_not_hilink(self):
        resp = MagicMock(text="<html>router login</html>", headers={}, status_code=200)
        with patch("modemctl.hilink.transport.requests.get", return_value=resp):
            with pytest.raises(ProtocolError):
                acquire_handshake("192.168.1.1")

    def test_unreachable_host(self, fake_modem):
        with pytest.raises(DeviceUnreachable):
            acquire_handshake("10.99.99.99")


class TestVerificationToken:
    def test_single_use(self):
        tok = VerificationToken("abc123")
        assert tok.consume() == "abc123"
        assert tok.consumed
        with pytest.raises(TokenConsumed):
            tok.consume()

    def test_token_consumed_is_protocol_error(self):
        assert issubclass(TokenConsumed, ProtocolError)

    def test_peek_does_not_consume(self):
        tok = VerificationToken("abc123")
        assert tok.peek() == "abc123"
        assert not tok.consumed


class TestClassifyLoginError:
    @pytest.mark.parametrize("code,reason", [
        ("108001", LoginFailure.BAD_USERNAME),
        ("108002", LoginFailure.BAD_PASSWORD),
        ("108003", LoginFailure.SESSION_CONFLICT),
        ("108006", LoginFailure.BAD_CREDENTIALS),
        ("108007", LoginFailure.RATE_LIMITED),
        ("125002", LoginFailure.INVALID_TOKEN),
        ("999999", LoginFailure.UNKNOWN),
    ])
    def test_codes(self, code, reason):
        err = classify_login_error(f"<error><code>{code}</code></error>")
        assert err.reason is reason
        assert err.code == code

    def test_wait_time(self):
        err = classify_login_error("<error><code>108007</code><waittime>5</waittime></error>")
        assert err.wait_time == 5
        assert "retry in 5 min" in str(err)

    def test_no_code(self):
        err = classify_login_error("<error></error>")
        assert err.reason is LoginFailure.UNKNOWN
        assert err.wait_time is None


class TestLoginAttempt:
    def test_success(self, fake_modem, modem_config):
        attempt = LoginAttempt(modem_config, timeout=5)
        session = attempt.run()
        assert attempt.state is LoginState.AUTHENTICATED
        assert attempt.password_type == "4"
        assert attempt.handshake.token.consumed
        assert (session.session, session.token) in fake_modem.login_pairs

    def test_session_cookie_is_trimmed(self, fake_modem, modem_config):
        session = LoginAttempt(modem_config).run()
        assert session.session.startswith("SessionID=auth")
        assert ";" not in session.session

    def test_sesinfo_firmware(self, fake_modem, modem_config):
        fake_modem.session_via = "sesinfo"
        attempt = LoginAttempt(modem_config)
        session = attempt.run()
        assert session.session == attempt.handshake.session
        assert session.is_valid

    def test_login_body(self, fake_modem, modem_config):
        LoginAttempt(modem_config).run()
        method, path, headers, _ = fake_modem.calls[-1]
        assert (method, path) == ("POST", "user/login")
        assert headers["Cookie"].startswith("SessionID=sess")
        assert headers["Content-Type"] == "application/xml"
        assert headers["__RequestVerificationToken"].startswith("tok")

    def test_bad_credentials(self, fake_modem):
        attempt = LoginAttempt(ModemConfig(fake_modem.ip, "admin", "wrong"))
        with pytest.raises(AuthFailed) as exc:
            attempt.run()
        assert exc.value.reason is LoginFailure.BAD_CREDENTIALS
        assert attempt.state is LoginState.FAILED
        assert attempt.error is exc.value

    def test_rate_limited(self, fake_modem, modem_config):
        fake_modem.login_error = 108007
        with pytest.raises(AuthFailed) as exc:
            LoginAttempt(modem_config).run()
        assert exc.value.reason is LoginFailure.RATE_LIMITED
        assert exc.value.wait_time == 5

    def test_unreachable(self, fake_modem, modem_config):
        fake_modem.unreachable.add("user/login")
        attempt = LoginAttempt(modem_config)
        with pytest.raises(DeviceUnreachable):
            attempt.run()
        assert attempt.state is LoginState.FAILED


def _resp(text, headers=None):
    return MagicMock(text=text, headers=headers or {}, status_code=200)


class TestWireScenarios:
    def test_sesinfo_without_set_cookie(self):
        resp = _resp("<response><SesInfo>xyz</SesInfo><TokInfo>abc123</TokInfo></response>")
        with patch("modemctl.hilink.transport.requests.get", return_value=resp):
            hs = acquire_handshake("192.168.8.1")
        assert hs.session == "SessionID=xyz"
        assert hs.token.peek() == "abc123"

    def test_login_cookie_replaces_handshake_session(self):
        handshake = _resp(
            "<response><SesInfo>SessionID=old</SesInfo><TokInfo>abc123</TokInfo></response>",
            {"Set-Cookie": "SessionID=old;path=/;HttpOnly"},
        )
        state = _resp("<response><State>-1</State><password_type>4</password_type></response>")
        login = _resp("<response>OK</response>", {
            "Set-Cookie": "SessionID=new1;path=/",
            "__RequestVerificationToken": "next1#next2",
        })
        with patch("modemctl.hilink.transport.requests.get", side_effect=[handshake, state]), \
                patch("modemctl.hilink.transport.requests.post", return_value=login) as mock_post:
            session = LoginAttempt(ModemConfig("192.168.8.1", "admin", "admin")).run()

        assert session.session == "SessionID=new1"
        assert session.token == "next1"
        kwargs = mock_post.call_args.kwargs
        assert kwargs["headers"]["Cookie"] == "SessionID=old"
        assert kwargs["headers"]["__RequestVerificationToken"] == "abc123"
        body = kwargs["data"].decode("utf-8")
        assert f"<Password>{encode_password('admin', 'admin', 'abc123')}</Password>" in body
        assert "<password_type>4</password_type>" in body

    def test_login_without_new_cookie_or_token(self):
        handshake = _resp("<response><SesInfo>SessionID=hs</SesInfo><TokInfo>abc123</TokInfo></response>")
        state = _resp("<response></response>")
        with patch("modemctl.hilink.transport.requests.get", side_effect=[handshake, state]), \
                patch("modemctl.hilink.transport.requests.post", return_value=_resp("<response>OK</response>")):
            attempt = LoginAttempt(ModemConfig("192.168.8.1", "admin", "admin"))
            session = attempt.run()
        assert attempt.password_type == "4"
        assert session == ModemSession(session="SessionID=hs", token="abc123")

    def test_unexpected_login_body(self):
        handshake = _resp("<response><TokInfo>abc123</TokInfo></response>", {"Set-Cookie": "SessionID=hs"})
        with patch("modemctl.hilink.transport.requests.get", side_effect=[handshake, _resp("")]), \
                patch("modemctl.hilink.transport.requests.post", return_value=_resp("<html>500</html>")):
            with pytest.raises(ProtocolError):
                LoginAttempt(ModemConfig("192.168.8.1", "admin", "admin")).run()
