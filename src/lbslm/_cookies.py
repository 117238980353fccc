"""Internal helpers for the session cookies returned by the login endpoint."""

from __future__ import annotations

from collections.abc import Iterable, Mapping


class SessionCookies(Mapping[str, str]):
    """Name -> value view over the raw ``Set-Cookie`` strings of a login.

    Every ``key=value`` segment of every cookie string is indexed, so fields
    the server tucks after the first ``;`` are found as well.  The first
    occurrence of a key wins.
    """

    def __init__(self, raw: Iterable[str]) -> None:
        self._raw = [c for c in raw if c]
        self._values: dict[str, str] = {}
        for cookie in self._raw:
            for segment in cookie.split(";"):
                key, sep, value = segment.strip().partition("=")
                if sep and key and key not in self._values:
                    self._values[key] = value

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self):
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __bool__(self) -> bool:
        return bool(self._raw)

    def __repr__(self) -> str:
        return f"SessionCookies({sorted(self._values)})"

    @property
    def raw(self) -> list[str]:
        """The ``Set-Cookie`` strings as received."""
        return list(self._raw)

    @property
    def uid(self) -> str | None:
        return self.get("uid")

    @property
    def token(self) -> str | None:
        return self.get("token")

    @property
    def session_id(self) -> str | None:
        return self.get("sessionId")

    def header(self) -> str:
        """Build a ``Cookie`` request header echoing each cookie's name=value pair."""
        return "; ".join(c.split(";")[0].strip() for c in self._raw)
