"""LBSLM smart diffuser API client.

Provides programmatic access to LBSLM / AMOS diffusers through their cloud
HTTP API.  The :class:`Client` class owns the account session; use
:meth:`~Client.device` to obtain :class:`Device` objects for per-device
operations::

    import asyncio
    from lbslm import Client

    client = await Client.login("me@example.com", "secret")
    device = client.device(0)

    await device.set_on(True)
    await device.set_intensity(40)

    # Keep the cached state in sync with the appliance
    poller = device.start_polling(lambda dev, state: print(dev.name, state))
    await poller.wait()

Every device call attaches the current session.  When the cloud reports the
session as expired, the client logs in again (once, however many calls hit
the expiry together) and the failed call is retried a single time.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import time
from collections.abc import Callable

import aiohttp

from lbslm._constants import (
    ADMIN_PREFIX,
    DEFAULT_APP_ID,
    DEFAULT_INTENSITY,
    DEFAULT_REGION,
    DEVICE_BASE_PATH,
    DEVICE_HEADERS,
    DEVICE_HOST,
    FULL_LEVEL,
    LOCK_PATH,
    LOCK_ROLLBACK_DELAY,
    POLL_INTERVAL,
    POWER_OFF_PATH,
    POWER_ON_PATH,
    REQUEST_TIMEOUT,
    RESET_LEVEL_PATH,
    STATUS_PATH,
    TIMER_LIST_PATH,
    UNLOCK_PATH,
    UPDATE_TIMER_PATH,
)
from lbslm.auth import AuthClient
from lbslm.exceptions import (
    ApiStatusError,
    AuthExhausted,
    HttpError,
    LbslmError,
    MissingCredentialsConfig,
    NoDevicesFound,
    NoTimersFound,
    ServiceUnavailable,
    TransportError,
)
from lbslm.models import (
    ApiResponse,
    Credentials,
    DeviceInfo,
    DeviceState,
    ResponseStatus,
    Timer,
    percent_to_run_seconds,
    run_seconds_to_percent,
)

_LOGGER = logging.getLogger(__name__)

StateCallback = Callable[["Device", DeviceState], None]


def _timestamp() -> float:
    return time.time()


def _query_value(value: object) -> str:
    return "" if value is None else str(value)


class Device:
    """A specific diffuser on the account.

    Obtained via :meth:`Client.device`.  Every network operation goes
    through :meth:`call`, which is the only place where an expired session is
    detected and repaired.

    The last observed state is kept in :attr:`state`; it is replaced as a
    whole after each successful poll or command.
    """

    def __init__(self, client: Client, info: DeviceInfo) -> None:
        self._client = client
        self._info = info
        self._state = DeviceState()
        self._timer: Timer | None = None
        self._listeners: list[StateCallback] = []
        self._poll_lock = asyncio.Lock()
        self._timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)

    def __repr__(self) -> str:
        return f"Device(nid={self.nid!r}, name={self.name!r})"

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def nid(self) -> str:
        """Cloud node id of this device."""
        return self._info.nid

    @property
    def name(self) -> str:
        """Display name of this device."""
        return self._info.name

    @property
    def info(self) -> DeviceInfo:
        """Decoded device-list entry (model, serial number, scent...)."""
        return self._info

    @property
    def username(self) -> str:
        return self._client.username

    @property
    def app_id(self) -> str:
        return self._client.app_id

    # ------------------------------------------------------------------
    # Cached state
    # ------------------------------------------------------------------

    @property
    def state(self) -> DeviceState:
        """Last observed state."""
        return self._state

    @property
    def timer(self) -> Timer | None:
        """Timer fetched by the last intensity update, if any."""
        return self._timer

    def add_listener(self, callback: StateCallback) -> Callable[[], None]:
        """Register *callback* for state changes; returns a function that removes it."""
        self._listeners.append(callback)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(callback)

        return remove

    def _set_state(self, state: DeviceState) -> None:
        self._state = state
        for callback in list(self._listeners):
            callback(self, state)

    # ------------------------------------------------------------------
    # API caller
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        if path.startswith(ADMIN_PREFIX):
            return f"http://{DEVICE_HOST}{path}"
        return f"http://{DEVICE_HOST}{DEVICE_BASE_PATH}{path}"

    def _headers(self, creds: Credentials) -> dict[str, str]:
        cookie = (
            f"appid={self.app_id};uid={creds.uid};token={creds.token};"
            f"SESSIONID={creds.session_id};username={self.username}"
        )
        return {**DEVICE_HEADERS, "Cookie": cookie}

    async def _request(self, path: str, params: dict[str, object] | None) -> ApiResponse:
        """Issue one GET with the client's current session and decode the body."""
        query = {k: _query_value(v) for k, v in (params or {}).items()}
        query["nid"] = self.nid
        query["timestamp"] = str(_timestamp())
        headers = self._headers(self._client.credentials)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self._url(path), params=query, headers=headers, timeout=self._timeout
                ) as resp:
                    if resp.status != 200:
                        raise HttpError(resp.status)
                    text = await resp.text()
        except (aiohttp.ClientError, TimeoutError) as e:
            _LOGGER.error("API error calling %s: %s", path, e)
            raise TransportError(f"Request to {path} failed: {e}") from e
        return ApiResponse.parse(text)

    async def call(self, path: str, params: dict[str, object] | None = None) -> dict[str, object]:
        """Call a device endpoint and return the parsed JSON body.

        *path* is relative to the ``/amosFragrance`` base path unless it
        starts with ``/admin/``.  ``nid`` and ``timestamp`` are added to
        *params* and always take precedence over same-named keys.

        If the API reports an authentication failure, the session is
        refreshed through :meth:`Client.refresh` and the call is retried once.

        Raises:
            AuthExhausted: Authentication failed again after the refresh.
            ApiStatusError: The API answered with another status.
            InvalidResponse: The body is not JSON.
            HttpError: The server answered with an HTTP status other than 200.
            TransportError: The request failed or timed out.
        """
        for attempt in range(2):
            response = await self._request(path, params)
            if response.status is ResponseStatus.OK:
                _LOGGER.debug("API success: %s", path)
                return response.body
            if response.status is ResponseStatus.ERROR:
                raise ApiStatusError(response.raw_status, response.body)
            if attempt == 0:
                _LOGGER.debug("Refreshing session for %s", path)
                await self._client.refresh()
        raise AuthExhausted("Authentication failed even after refresh.")

    # ------------------------------------------------------------------
    # Power
    # ------------------------------------------------------------------

    async def get_on(self) -> bool:
        return self._state.is_on

    async def set_on(self, value: bool) -> None:
        """Switch the diffuser on or off."""
        _LOGGER.info("Setting %s to %s", self.name, "ON" if value else "OFF")
        try:
            await self.call(POWER_ON_PATH if value else POWER_OFF_PATH)
        except LbslmError as e:
            _LOGGER.error("Failed to set state: %s", e)
            raise ServiceUnavailable(f"Failed to set state: {e}") from e
        self._set_state(dataclasses.replace(self._state, is_on=value))

    # ------------------------------------------------------------------
    # Intensity
    # ------------------------------------------------------------------

    async def get_intensity(self) -> int:
        """Intensity (0-100) of the last fetched timer, or 50 if none was fetched."""
        if self._timer is None:
            return DEFAULT_INTENSITY
        return run_seconds_to_percent(self._timer.run)

    async def set_intensity(self, value: float) -> None:
        """Set the intensity (0-100) by rewriting the run time of the device timer.

        ``0`` is ignored; switching off is :meth:`set_on`'s job.

        Raises:
            ValueError: *value* is outside 0-100.
            ServiceUnavailable: The timer could not be read or updated.
        """
        if not 0 <= value <= 100:
            raise ValueError(f"Intensity must be between 0 and 100, got {value}")
        if value == 0:
            return
        run = percent_to_run_seconds(value)
        _LOGGER.info("Setting intensity (run time) of %s to %ss (%s%%)", self.name, run, value)
        try:
            await self._update_timer_run(run)
        except LbslmError as e:
            _LOGGER.error("Failed to set intensity: %s", e)
            raise ServiceUnavailable(f"Failed to set intensity: {e}") from e

    async def _update_timer_run(self, run: int) -> None:
        try:
            body = await self.call(TIMER_LIST_PATH, {"isBluetooth": 0})
        except LbslmError as e:
            _LOGGER.warning("Failed to fetch timer list, cannot set intensity: %s", e)
            raise
        timers = body.get("data")
        if not isinstance(timers, list) or not timers:
            raise NoTimersFound("No timers found to update intensity")

        timer = Timer.from_wire(timers[0])
        self._timer = timer
        await self.call(UPDATE_TIMER_PATH, timer.update_params(run))

    # ------------------------------------------------------------------
    # Child lock
    # ------------------------------------------------------------------

    async def set_lock(self, locked: bool) -> None:
        """Lock or unlock the physical controls.

        On failure the cached lock flag is reverted to the opposite of
        *locked* shortly afterwards, so a bridge that displayed the
        requested value optimistically snaps back.
        """
        if locked:
            path, params = LOCK_PATH, None
        else:
            path, params = UNLOCK_PATH, {"days": 0, "name": ""}
        try:
            await self.call(path, params)
        except LbslmError as e:
            _LOGGER.error("Failed to set Lock: %s", e)
            asyncio.get_running_loop().call_later(
                LOCK_ROLLBACK_DELAY, self._rollback_lock, not locked
            )
            raise ServiceUnavailable(f"Failed to set lock: {e}") from e
        self._set_state(dataclasses.replace(self._state, locked=locked))

    def _rollback_lock(self, locked: bool) -> None:
        try:
            self._set_state(dataclasses.replace(self._state, locked=locked))
        except Exception:
            _LOGGER.exception("State listener failed during lock rollback")

    # ------------------------------------------------------------------
    # Consumable
    # ------------------------------------------------------------------

    async def get_consumable_level(self) -> int:
        """Remaining oil in percent, as last observed."""
        return self._state.consumable_level

    @property
    def needs_attention(self) -> bool:
        """True when the oil level is below 10%."""
        return self._state.needs_attention

    async def reset_consumable(self) -> None:
        """Tell the cloud the oil was refilled (level back to 100%)."""
        try:
            await self.call(RESET_LEVEL_PATH, {"liquidLevel": FULL_LEVEL})
        except LbslmError as e:
            _LOGGER.error("Failed to Reset Filter: %s", e)
            raise ServiceUnavailable(f"Failed to reset consumable level: {e}") from e
        self._set_state(dataclasses.replace(self._state, consumable_level=FULL_LEVEL))

    # ------------------------------------------------------------------
    # Status polling
    # ------------------------------------------------------------------

    async def poll_status(self) -> DeviceState | None:
        """Fetch the device status once and update :attr:`state`.

        Never raises for API failures: they are logged and ``None`` is
        returned.  Also returns ``None`` without a request while another
        poll of this device is in flight, and leaves the state untouched when
        the response carries no ``data``.
        """
        if self._poll_lock.locked():
            _LOGGER.debug("Poll of %s already in flight, skipping", self.name)
            return None
        async with self._poll_lock:
            try:
                body = await self.call(STATUS_PATH, {"checkPermissions": 0})
            except LbslmError as e:
                _LOGGER.debug("Polling %s failed: %s", self.name, e)
                return None

            data = body.get("data")
            if not isinstance(data, dict):
                return None
            state = DeviceState.from_wire(data)
            self._set_state(state)
            return state

    def start_polling(
        self,
        callback: StateCallback | None = None,
        *,
        interval: float = POLL_INTERVAL,
    ) -> Poller:
        """Poll the device now and then every *interval* seconds.

        *callback*, if given, is registered as a state listener for the
        lifetime of the poller.  Returns a :class:`Poller` whose
        :meth:`~Poller.stop` method cancels the background loop.
        """
        remove = self.add_listener(callback) if callback is not None else None
        task = asyncio.create_task(self._run_poll_loop(interval))
        return Poller(task, self, on_stop=remove)

    async def _run_poll_loop(self, interval: float) -> None:
        while True:
            try:
                await self.poll_status()
            except Exception:
                _LOGGER.exception("Unexpected error polling %s", self.name)
            await asyncio.sleep(interval)


class Poller:
    """Handle for a running status poll loop.

    Returned by :meth:`Device.start_polling`.  Call :meth:`stop` to cancel
    the loop, or :meth:`wait` to block until it ends.
    """

    def __init__(
        self,
        task: asyncio.Task[None],
        device: Device,
        *,
        on_stop: Callable[[], None] | None = None,
    ) -> None:
        self._task = task
        self._device = device
        self._on_stop = on_stop

    @property
    def device(self) -> Device:
        return self._device

    @property
    def running(self) -> bool:
        return not self._task.done()

    async def stop(self) -> None:
        """Cancel the loop and wait for cleanup."""
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        if self._on_stop is not None:
            self._on_stop()
            self._on_stop = None

    async def wait(self) -> None:
        """Wait until the loop ends.

        Raises :class:`asyncio.CancelledError` if the task is cancelled
        externally (e.g. by *Ctrl-C*).
        """
        await self._task


class Client:
    """LBSLM cloud account client and session coordinator.

    Use :meth:`login` to authenticate.  A client built directly from known
    *credentials* logs in lazily, the first time a device call reports an
    expired session.

    All devices obtained from one client share its session: a refresh
    triggered by any of them is used by all of them from their next call.
    """

    def __init__(
        self,
        username: str,
        password: str,
        *,
        region: str = DEFAULT_REGION,
        app_id: str = DEFAULT_APP_ID,
        credentials: Credentials | None = None,
        devices: list[dict[str, object]] | None = None,
        auth: AuthClient | None = None,
    ) -> None:
        self._username = username
        self._password = password
        self._region = region
        self._app_id = app_id or DEFAULT_APP_ID
        self._credentials = credentials or Credentials(token="", uid="", session_id="")
        self._devices = list(devices or [])
        self._auth = auth or AuthClient(region)
        self._refresh_task: asyncio.Task[Credentials] | None = None
        self._handles: dict[str, Device] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    async def login(
        cls,
        username: str,
        password: str,
        *,
        region: str = DEFAULT_REGION,
        app_id: str = DEFAULT_APP_ID,
    ) -> Client:
        """Authenticate and return a new client with the account's device list.

        Raises :class:`~lbslm.exceptions.NoDevicesFound` if the account has
        no devices, and any :class:`~lbslm.exceptions.AuthError` or
        :class:`~lbslm.exceptions.ApiError` raised while logging in.
        """
        client = cls(username, password, region=region, app_id=app_id)
        await client.refresh()
        _LOGGER.info("Logged in as %s, %d device(s) found", username, len(client._devices))
        return client

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def username(self) -> str:
        return self._username

    @property
    def region(self) -> str:
        return self._region

    @property
    def app_id(self) -> str:
        return self._app_id

    @property
    def credentials(self) -> Credentials:
        """The active session; replaced as a whole by :meth:`refresh`."""
        return self._credentials

    @property
    def devices(self) -> list[DeviceInfo]:
        """Devices listed by the last login."""
        return [DeviceInfo.from_wire(d) for d in self._devices]

    # ------------------------------------------------------------------
    # Session refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> Credentials:
        """Log in again and replace the active session.

        Concurrent callers share a single login: whoever arrives while a
        refresh is in flight awaits that same refresh and receives the same
        :class:`~lbslm.models.Credentials` object.

        Raises:
            MissingCredentialsConfig: No username/password is configured.
            NoDevicesFound: The account lists no devices.
            AuthError, ApiError: The login itself failed.
        """
        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._execute_refresh())
            self._refresh_task = task
            task.add_done_callback(self._clear_refresh)
        return await asyncio.shield(task)

    def _clear_refresh(self, task: asyncio.Task[Credentials]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _execute_refresh(self) -> Credentials:
        if not self._username or not self._password:
            raise MissingCredentialsConfig(
                "Cannot refresh session: no username/password configured."
            )
        _LOGGER.info("Refreshing session for %s", self._username)
        try:
            account = await self._auth.get_credentials(self._username, self._password)
        except LbslmError as e:
            _LOGGER.error("Failed to refresh session: %s", e)
            raise
        if account is None:
            raise NoDevicesFound(f"No devices found for {self._username}.")

        self._credentials = account.credentials
        self._devices = account.devices
        self._sync_handles()
        _LOGGER.info(
            "Session refreshed successfully (token %s...)", account.credentials.token[:10]
        )
        return account.credentials

    # ------------------------------------------------------------------
    # Device management
    # ------------------------------------------------------------------

    async def fetch_devices(self) -> list[DeviceInfo]:
        """Log in again and return the refreshed device list."""
        await self.refresh()
        return self.devices

    def device(self, index_or_nid: int | str) -> Device:
        """Return the :class:`Device` for the given index or nid.

        The same object is returned for a nid on every lookup, so its cached
        state and poll guard are shared by all callers.

        Args:
            index_or_nid: Zero-based index into :attr:`devices`, or the
                device nid string.

        Raises:
            IndexError: If an integer index is out of range, or no devices
                are cached (integer lookup only).
            KeyError: If a nid is not found, or no devices are cached
                (string lookup only).
        """
        devs = self.devices
        if not devs:
            if isinstance(index_or_nid, str):
                raise KeyError(
                    f"No device with nid '{index_or_nid}': device list is empty. "
                    "Call fetch_devices() first."
                )
            raise IndexError("No cached device list. Call fetch_devices() first.")
        if isinstance(index_or_nid, int):
            if index_or_nid < 0 or index_or_nid >= len(devs):
                raise IndexError(f"Invalid index {index_or_nid}. Must be 0..{len(devs) - 1}.")
            return self._handle(devs[index_or_nid])
        for info in devs:
            if info.nid == index_or_nid:
                return self._handle(info)
        raise KeyError(f"No device with nid '{index_or_nid}'.")

    def _handle(self, info: DeviceInfo) -> Device:
        device = self._handles.get(info.nid)
        if device is None:
            device = self._handles[info.nid] = Device(self, info)
        return device

    def _sync_handles(self) -> None:
        """Drop handles of devices no longer listed; refresh the info of the rest."""
        infos = {info.nid: info for info in self.devices}
        for nid in list(self._handles):
            if nid in infos:
                self._handles[nid]._info = infos[nid]
            else:
                del self._handles[nid]
