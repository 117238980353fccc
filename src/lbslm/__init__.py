"""Python API and CLI for controlling LBSLM smart diffusers."""

from lbslm.auth import AuthClient
from lbslm.client import Client, Device, Poller
from lbslm.exceptions import (
    ApiError,
    AuthError,
    LbslmError,
    NoDevicesFound,
    ServiceUnavailable,
)
from lbslm.models import Credentials, DeviceInfo, DeviceState, Timer

__all__ = [
    "ApiError",
    "AuthClient",
    "AuthError",
    "Client",
    "Credentials",
    "Device",
    "DeviceInfo",
    "DeviceState",
    "LbslmError",
    "NoDevicesFound",
    "Poller",
    "ServiceUnavailable",
    "Timer",
]
