"""Internal constants for the LBSLM / AMOS cloud API."""

from __future__ import annotations

HOSTS: dict[str, str] = {
    "CN": "amos.cn.lbslm.com",
    "US": "amos.us.lbslm.com",
}
DEFAULT_REGION = "CN"

# Device control is always relayed through the US host, whatever region the
# account logged in with.
DEVICE_HOST = "amos.us.lbslm.com"
DEVICE_BASE_PATH = "/amosFragrance"
ADMIN_PREFIX = "/admin/"

LOGIN_PATH = "/admin/login.do"
DEVICE_LIST_PATH = "/admin/amos/searchForWeb.do"

POWER_ON_PATH = "/openFragrance.do"
POWER_OFF_PATH = "/closeFragrance.do"
STATUS_PATH = "/amosFragrance.do"
TIMER_LIST_PATH = "/timerList.do"
UPDATE_TIMER_PATH = "/updateTimer.do"
RESET_LEVEL_PATH = "/resetLiquidLevel.do"
LOCK_PATH = "/admin/amos/deviceLock.do"
UNLOCK_PATH = "/admin/amos/deviceUnlock.do"

DEFAULT_APP_ID = "19987617"

AUTH_FAILURE_MARKER = "AuthenticationException"

AUTH_TIMEOUT = 10  # seconds
REQUEST_TIMEOUT = 10  # seconds
POLL_INTERVAL = 30  # seconds
LOCK_ROLLBACK_DELAY = 0.5  # seconds

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

AUTH_HEADERS: dict[str, str] = {
    "Content-Type": "application/x-www-form-urlencoded",
    "User-Agent": BROWSER_USER_AGENT,
}

DEVICE_HEADERS: dict[str, str] = {
    "Accept": "*/*",
    "User-Agent": "UPerfume/2.1.5 (iPhone; iOS 26.3; Scale/3.00)",
    "Accept-Language": "en-US;q=1",
}

MANUFACTURER = "Guangzhou You'an Information Technology Co., Ltd."
DEFAULT_MODEL = "Smart Diffuser"
DEFAULT_DEVICE_NAME = "Smart Diffuser"

DEFAULT_INTENSITY = 50
MIN_RUN_SECONDS = 5
SECONDS_PER_PERCENT = 3
LOW_LEVEL_THRESHOLD = 10
FULL_LEVEL = 100
