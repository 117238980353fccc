"""Data model for LBSLM devices: session, device info, state and wire envelope."""

from __future__ import annotations

import enum
import json
import math
from dataclasses import dataclass, field

from lbslm._constants import (
    DEFAULT_DEVICE_NAME,
    DEFAULT_MODEL,
    LOW_LEVEL_THRESHOLD,
    MANUFACTURER,
    MIN_RUN_SECONDS,
    SECONDS_PER_PERCENT,
)
from lbslm.exceptions import InvalidResponse


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives (4.5 -> 5)."""
    return math.floor(value + 0.5)


def _to_int(value: object) -> int:
    """Best-effort integer decoding of a wire field (0 when absent or garbled)."""
    try:
        return int(float(str(value or 0)))
    except ValueError:
        return 0


def percent_to_run_seconds(value: float) -> int:
    """Map a 0-100 intensity to the device run time in seconds (5-300)."""
    return max(MIN_RUN_SECONDS, round_half_up(value * SECONDS_PER_PERCENT))


def run_seconds_to_percent(run: float) -> int:
    """Map a device run time in seconds back to a 0-100 intensity."""
    return min(100, round_half_up(run / SECONDS_PER_PERCENT))


@dataclass(frozen=True)
class Credentials:
    """The tuple that authorizes device-scoped calls.

    Never patched field by field: a refresh replaces the whole value.
    """

    token: str
    uid: str
    session_id: str

    def __repr__(self) -> str:
        return f"Credentials(uid={self.uid!r}, token={self.token[:10]!r}...)"


@dataclass(frozen=True)
class AccountSession:
    """Result of a full login: the session plus the account's device list."""

    nid: str
    """Nid of the primary (first listed) device."""

    credentials: Credentials

    devices: list[dict[str, object]]
    """Raw device-list entries, in the order the API returned them."""


@dataclass(frozen=True)
class DeviceInfo:
    """A device-list entry, decoded."""

    nid: str
    name: str
    hsn: str = ""
    oil_name: str = ""
    model: str = DEFAULT_MODEL
    raw: dict[str, object] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_wire(cls, entry: dict[str, object]) -> DeviceInfo:
        hsn = str(entry.get("hsn") or "")
        device_type = entry.get("deviceType")
        model = DEFAULT_MODEL
        if isinstance(device_type, dict) and device_type.get("typeCode"):
            model = str(device_type["typeCode"])
        return cls(
            nid=str(entry["nid"]),
            name=str(
                entry.get("nickname") or entry.get("deviceAlias") or hsn or DEFAULT_DEVICE_NAME
            ),
            hsn=hsn,
            oil_name=str(entry.get("oilName") or ""),
            model=model,
            raw=entry,
        )

    @property
    def manufacturer(self) -> str:
        return MANUFACTURER

    @property
    def serial_number(self) -> str:
        """Hardware serial number, falling back to the nid."""
        return self.hsn or self.nid

    @property
    def firmware_revision(self) -> str:
        """The loaded scent, reported in the firmware slot (``""`` when unknown)."""
        return f"Scent: {self.oil_name}" if self.oil_name else ""


@dataclass(frozen=True)
class DeviceState:
    """Snapshot of a device as last observed.

    Replaced as a whole on every update; readers never see a half-written
    state.
    """

    is_on: bool = False
    run_seconds: int = 0
    consumable_level: int = 100
    """Remaining oil, in percent."""

    locked: bool = False
    """Child lock on the physical controls."""

    @classmethod
    def from_wire(cls, data: dict[str, object]) -> DeviceState:
        """Decode the ``data`` object of a status response.

        Missing numeric fields read as 0 and missing flags as ``False``.
        """
        return cls(
            is_on=data.get("status") is True,
            run_seconds=_to_int(data.get("run")),
            consumable_level=_to_int(data.get("liquidLevel")),
            locked=bool(data.get("lockMark")),
        )

    @property
    def intensity(self) -> int:
        """Run time expressed as a 0-100 intensity."""
        return run_seconds_to_percent(self.run_seconds)

    @property
    def needs_attention(self) -> bool:
        """True when the oil is running low."""
        return self.consumable_level < LOW_LEVEL_THRESHOLD


@dataclass(frozen=True)
class Timer:
    """A device timer as returned by ``timerList.do``.

    Only ``run`` is ever changed by this library; the remaining fields are
    echoed back untouched on update.
    """

    timer_id: object = None
    uid: object = None
    name: object = None
    start: object = None
    stop: object = None
    mode: object = None
    run: int = 0
    suspend: object = None

    @classmethod
    def from_wire(cls, entry: dict[str, object]) -> Timer:
        return cls(
            timer_id=entry.get("timerId"),
            uid=entry.get("uid"),
            name=entry.get("name"),
            start=entry.get("start"),
            stop=entry.get("stop"),
            mode=entry.get("mode"),
            run=_to_int(entry.get("run")),
            suspend=entry.get("suspend"),
        )

    def update_params(self, run: int) -> dict[str, object]:
        """Query parameters for ``updateTimer.do`` with *run* replaced."""
        return {
            "timerId": self.timer_id,
            "uid": self.uid,
            "name": self.name,
            "start": self.start,
            "stop": self.stop,
            "mode": self.mode,
            "run": run,
            "suspend": self.suspend,
        }


class ResponseStatus(enum.Enum):
    """Closed set of outcomes carried by the ``status`` field of API responses."""

    OK = "ok"
    AUTH_FAILED = "auth_failed"
    ERROR = "error"

    @classmethod
    def decode(cls, raw: object) -> ResponseStatus:
        value = str(raw)
        if value == "200":
            return cls.OK
        if value in ("AuthenticationException", "401"):
            return cls.AUTH_FAILED
        return cls.ERROR


@dataclass(frozen=True)
class ApiResponse:
    """A device API response body, decoded once at the HTTP boundary."""

    status: ResponseStatus
    raw_status: object
    body: dict[str, object]

    @classmethod
    def parse(cls, text: str) -> ApiResponse:
        """Decode a response body.

        Raises :class:`~lbslm.exceptions.InvalidResponse` (with the first 50
        characters of *text*) if the body is not a JSON object.
        """
        try:
            body = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            raise InvalidResponse(text[:50]) from None
        if not isinstance(body, dict):
            raise InvalidResponse(text[:50])
        raw_status = body.get("status")
        return cls(ResponseStatus.decode(raw_status), raw_status, body)

    @property
    def data(self) -> object:
        return self.body.get("data")
