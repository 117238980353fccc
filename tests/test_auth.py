"""Tests for lbslm.auth."""

from __future__ import annotations

import logging
import re
from typing import Any

import aiohttp
import pytest
from aioresponses import aioresponses

from lbslm._cookies import SessionCookies
from lbslm.auth import AuthClient, resolve_host
from lbslm.exceptions import (
    HttpError,
    InvalidCredentials,
    ParseError,
    SessionNotEstablished,
    TransportError,
    UidNotFound,
)

_CN_LOGIN_URL = re.compile(r"^http://amos\.cn\.lbslm\.com/admin/login\.do")
_US_LOGIN_URL = re.compile(r"^http://amos\.us\.lbslm\.com/admin/login\.do")
_DEVICE_LIST_URL = re.compile(r"^http://amos\.cn\.lbslm\.com/admin/amos/searchForWeb\.do")

_SESSION_COOKIE = "uid=U001; token=tok-123456789abc; sessionId=S001; Path=/"

MOCK_DEVICE: dict[str, Any] = {
    "nid": 4242,
    "nickname": "Bedroom",
    "hsn": "HSN001",
    "oilName": "Lavender",
    "deviceType": {"typeCode": "A100"},
}


def _calls(m: aioresponses, method: str = "POST") -> list[tuple[Any, Any]]:
    """Flatten recorded requests into ``(url, call)`` pairs in arrival order."""
    return [
        (url, call)
        for (meth, url), calls in m.requests.items()
        if meth == method
        for call in calls
    ]


# ---------------------------------------------------------------------------
# Region selection
# ---------------------------------------------------------------------------


class TestResolveHost:
    def test_cn(self):
        assert resolve_host("CN") == "amos.cn.lbslm.com"

    def test_us(self):
        assert resolve_host("US") == "amos.us.lbslm.com"

    def test_lowercase(self):
        assert resolve_host("us") == "amos.us.lbslm.com"

    @pytest.mark.parametrize("region", ["EU", "", None])
    def test_unknown_falls_back_to_cn(self, region):
        assert resolve_host(region) == "amos.cn.lbslm.com"

    def test_auth_client_base_url(self):
        assert AuthClient("US").base_url == "http://amos.us.lbslm.com"
        assert AuthClient().host == "amos.cn.lbslm.com"


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLogin:
    async def test_returns_cookies(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="ok", headers={"Set-Cookie": _SESSION_COOKIE})
            cookies = await AuthClient().login("me@example.com", "secret")

        assert isinstance(cookies, SessionCookies)
        assert cookies.uid == "U001"
        assert cookies.token == "tok-123456789abc"
        assert cookies.session_id == "S001"

    async def test_sends_form(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="ok", headers={"Set-Cookie": _SESSION_COOKIE})
            await AuthClient().login("me@example.com", "secret")

            [(_, call)] = _calls(m)

        assert call.kwargs["data"] == {
            "platform": "1",
            "areaCode": "0",
            "username": "me@example.com",
            "password": "secret",
        }
        assert call.kwargs["allow_redirects"] is False
        assert call.kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"

    async def test_redirect_with_cookies_is_success(self):
        with aioresponses() as m:
            m.post(
                _CN_LOGIN_URL,
                status=302,
                headers={"Set-Cookie": _SESSION_COOKIE, "Location": "/admin/index.do"},
            )
            cookies = await AuthClient().login("me@example.com", "secret")

        assert cookies is not None
        assert cookies.uid == "U001"

    async def test_us_region_uses_us_host(self):
        with aioresponses() as m:
            m.post(_US_LOGIN_URL, status=200, body="ok", headers={"Set-Cookie": _SESSION_COOKIE})
            cookies = await AuthClient("US").login("me@example.com", "secret")

        assert cookies is not None

    async def test_failure_marker_raises(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body='{"status": "AuthenticationException"}')
            with pytest.raises(InvalidCredentials, match="Invalid credentials"):
                await AuthClient().login("me@example.com", "wrong")

    async def test_no_cookie_without_marker_returns_none(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="<html>welcome</html>")
            assert await AuthClient().login("me@example.com", "secret") is None

    async def test_http_error(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=401)
            with pytest.raises(HttpError) as exc_info:
                await AuthClient().login("me@example.com", "secret")

        assert exc_info.value.status == 401
        assert str(exc_info.value) == "HTTP 401"

    async def test_transport_error(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, exception=aiohttp.ClientConnectionError("refused"))
            with pytest.raises(TransportError) as exc_info:
                await AuthClient().login("me@example.com", "secret")

        assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)


# ---------------------------------------------------------------------------
# fetch_devices
# ---------------------------------------------------------------------------


class TestFetchDevices:
    COOKIES = SessionCookies([_SESSION_COOKIE])

    async def test_returns_data(self):
        with aioresponses() as m:
            m.post(_DEVICE_LIST_URL, payload={"data": [MOCK_DEVICE]})
            devices = await AuthClient().fetch_devices(self.COOKIES, "U001")

        assert devices == [MOCK_DEVICE]

    async def test_request_shape(self):
        with aioresponses() as m:
            m.post(_DEVICE_LIST_URL, payload={"data": []})
            await AuthClient().fetch_devices(self.COOKIES, "U001")

            [(url, call)] = _calls(m)

        assert url.query["uid"] == "U001"
        assert url.query["online"] == "2"
        assert url.query["length"] == "10"
        assert call.kwargs["headers"]["Cookie"] == "uid=U001"
        assert call.kwargs["headers"]["X-Requested-With"] == "XMLHttpRequest"

    async def test_null_data_returns_empty(self):
        with aioresponses() as m:
            m.post(_DEVICE_LIST_URL, payload={"data": None})
            assert await AuthClient().fetch_devices(self.COOKIES, "U001") == []

    async def test_missing_data_returns_empty(self):
        with aioresponses() as m:
            m.post(_DEVICE_LIST_URL, payload={"recordsTotal": 0})
            assert await AuthClient().fetch_devices(self.COOKIES, "U001") == []

    async def test_invalid_json(self):
        with aioresponses() as m:
            m.post(_DEVICE_LIST_URL, body="<html>login</html>")
            with pytest.raises(ParseError, match="Failed to parse device list JSON"):
                await AuthClient().fetch_devices(self.COOKIES, "U001")


# ---------------------------------------------------------------------------
# get_credentials
# ---------------------------------------------------------------------------


class TestGetCredentials:
    async def test_assembles_account_session(self):
        second = {**MOCK_DEVICE, "nid": 4343}
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="ok", headers={"Set-Cookie": _SESSION_COOKIE})
            m.post(_DEVICE_LIST_URL, payload={"data": [MOCK_DEVICE, second]})
            account = await AuthClient().get_credentials("me@example.com", "secret")

        assert account is not None
        assert account.nid == "4242"
        assert account.credentials.uid == "U001"
        assert account.credentials.token == "tok-123456789abc"
        assert account.credentials.session_id == "S001"
        assert account.devices == [MOCK_DEVICE, second]

    async def test_missing_token_and_session_become_empty(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="ok", headers={"Set-Cookie": "uid=U001; Path=/"})
            m.post(_DEVICE_LIST_URL, payload={"data": [MOCK_DEVICE]})
            account = await AuthClient().get_credentials("me@example.com", "secret")

        assert account is not None
        assert account.credentials.token == ""
        assert account.credentials.session_id == ""

    async def test_no_devices_returns_none(self, caplog):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="ok", headers={"Set-Cookie": _SESSION_COOKIE})
            m.post(_DEVICE_LIST_URL, payload={"data": []})
            with caplog.at_level(logging.WARNING, logger="lbslm.auth"):
                account = await AuthClient().get_credentials("me@example.com", "secret")

        assert account is None
        assert "No devices found" in caplog.text

    async def test_no_cookies(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="ok")
            with pytest.raises(SessionNotEstablished, match="no cookies received"):
                await AuthClient().get_credentials("me@example.com", "secret")

    async def test_no_uid(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="ok", headers={"Set-Cookie": "token=T; Path=/"})
            with pytest.raises(UidNotFound):
                await AuthClient().get_credentials("me@example.com", "secret")

    async def test_invalid_credentials_logged_and_raised(self, caplog):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="AuthenticationException")
            with caplog.at_level(logging.ERROR, logger="lbslm.auth"):
                with pytest.raises(InvalidCredentials):
                    await AuthClient().get_credentials("me@example.com", "wrong")

        assert "Authentication error" in caplog.text

    async def test_device_list_failure_propagates(self):
        with aioresponses() as m:
            m.post(_CN_LOGIN_URL, status=200, body="ok", headers={"Set-Cookie": _SESSION_COOKIE})
            m.post(_DEVICE_LIST_URL, body="not json")
            with pytest.raises(ParseError):
                await AuthClient().get_credentials("me@example.com", "secret")
