"""Account authentication against the LBSLM cloud.

:class:`AuthClient` performs the web-admin login (username/password -> session
cookies), lists the devices bound to the account and combines both into an
:class:`~lbslm.models.AccountSession`::

    auth = AuthClient(region="US")
    account = await auth.get_credentials("me@example.com", "secret")
    if account is not None:
        print(account.nid, account.credentials.uid)
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncIterator

import aiohttp

from lbslm._constants import (
    AUTH_FAILURE_MARKER,
    AUTH_HEADERS,
    AUTH_TIMEOUT,
    BROWSER_USER_AGENT,
    DEFAULT_REGION,
    DEVICE_LIST_PATH,
    HOSTS,
    LOGIN_PATH,
)
from lbslm._cookies import SessionCookies
from lbslm.exceptions import (
    HttpError,
    InvalidCredentials,
    ParseError,
    SessionNotEstablished,
    TransportError,
    UidNotFound,
)
from lbslm.models import AccountSession, Credentials

_LOGGER = logging.getLogger(__name__)


def resolve_host(region: str | None) -> str:
    """Return the API host for *region*, falling back to the CN host."""
    return HOSTS.get(str(region or "").upper(), HOSTS[DEFAULT_REGION])


@contextlib.asynccontextmanager
async def _use_session(
    session: aiohttp.ClientSession | None,
) -> AsyncIterator[aiohttp.ClientSession]:
    """Yield *session*, or a short-lived one when none is supplied."""
    if session is not None:
        yield session
        return
    async with aiohttp.ClientSession() as own:
        yield own


class AuthClient:
    """Log in to the LBSLM cloud and list the account's devices.

    Args:
        region: ``"CN"`` (default) or ``"US"``.  Unknown codes fall back to CN.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self, region: str | None = DEFAULT_REGION, *, timeout: float = AUTH_TIMEOUT
    ) -> None:
        self._host = resolve_host(region)
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        _LOGGER.debug("Using auth host %s", self._host)

    @property
    def host(self) -> str:
        return self._host

    @property
    def base_url(self) -> str:
        return f"http://{self._host}"

    async def login(
        self,
        username: str,
        password: str,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> SessionCookies | None:
        """Log in and return the session cookies.

        Returns ``None`` when the server accepts the request but sets no
        cookie and does not flag the credentials as invalid.

        Raises:
            InvalidCredentials: The response body carries the authentication
                failure marker.
            HttpError: The server answered outside the 2xx/3xx range.
            TransportError: The request failed or timed out.
        """
        form = {
            "platform": "1",
            "areaCode": "0",
            "username": username,
            "password": password,
        }
        async with _use_session(session) as http:
            try:
                async with http.post(
                    f"{self.base_url}{LOGIN_PATH}",
                    data=form,
                    headers=AUTH_HEADERS,
                    allow_redirects=False,
                    timeout=self._timeout,
                ) as resp:
                    if not 200 <= resp.status < 400:
                        raise HttpError(resp.status)
                    raw_cookies = resp.headers.getall("Set-Cookie", [])
                    if raw_cookies:
                        return SessionCookies(raw_cookies)
                    # The API may answer 200 with the failure marker in the body.
                    body = await resp.text()
            except (aiohttp.ClientError, TimeoutError) as e:
                raise TransportError(f"Login request failed: {e}") from e

        if AUTH_FAILURE_MARKER in body:
            raise InvalidCredentials("Invalid credentials")
        return None

    async def fetch_devices(
        self,
        cookies: SessionCookies,
        uid: str,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> list[dict[str, object]]:
        """Return the raw device-list entries bound to *uid*.

        Returns an empty list when the response carries no ``data``.

        Raises:
            ParseError: The response body is not JSON.
            TransportError: The request failed or timed out.
        """
        params = {"online": 2, "uid": uid, "draw": 1, "start": 0, "length": 10}
        headers = {
            "User-Agent": BROWSER_USER_AGENT,
            "X-Requested-With": "XMLHttpRequest",
            "Cookie": cookies.header(),
        }
        async with _use_session(session) as http:
            try:
                async with http.post(
                    f"{self.base_url}{DEVICE_LIST_PATH}",
                    params=params,
                    headers=headers,
                    timeout=self._timeout,
                ) as resp:
                    text = await resp.text()
            except (aiohttp.ClientError, TimeoutError) as e:
                raise TransportError(f"Device list request failed: {e}") from e

        try:
            body = json.loads(text)
        except json.JSONDecodeError:
            raise ParseError("Failed to parse device list JSON") from None
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            return []
        return data

    async def get_credentials(self, username: str, password: str) -> AccountSession | None:
        """Log in, list devices and assemble the account session.

        The first listed device is treated as the primary one.  Returns
        ``None`` when the account has no devices.

        Raises:
            SessionNotEstablished: Login set no cookies.
            UidNotFound: The cookies carry no ``uid``.
            InvalidCredentials, HttpError, ParseError, TransportError: As
                raised by :meth:`login` and :meth:`fetch_devices`.
        """
        try:
            async with aiohttp.ClientSession() as session:
                cookies = await self.login(username, password, session=session)
                if not cookies:
                    raise SessionNotEstablished("Login failed: no cookies received")

                uid = cookies.uid
                if not uid:
                    raise UidNotFound("Login succeeded but UID not found in cookies")
                _LOGGER.debug("Login successful. UID: %s", uid)

                devices = await self.fetch_devices(cookies, uid, session=session)
        except Exception as e:
            _LOGGER.error("Authentication error: %s", e)
            raise

        if not devices:
            _LOGGER.warning("No devices found on account.")
            return None

        credentials = Credentials(
            token=cookies.token or "",
            uid=uid,
            session_id=cookies.session_id or "",
        )
        return AccountSession(
            nid=str(devices[0].get("nid", "")),
            credentials=credentials,
            devices=devices,
        )
