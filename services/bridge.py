from __future__ import annotations

from typing import TYPE_CHECKING

import services.logger as log
from services.cooldown import Cooldown
from services.error import UnsupportedPlatform
from services.message import Platform

if TYPE_CHECKING:
    from drivers import BaseDriver

l = log.get_logger()

# Config keys whose values are treated as credentials and must never appear in
# log output.  Matched as substrings against lower-cased key names.
_SENSITIVE_KEY_PATTERNS = ("token", "secret", "password")


def _collect_sensitive(obj, found: set[str]) -> None:
    """Recursively extract sensitive string values from the config dict."""
    if isinstance(obj, dict):
        for k, v in obj.items():
            if isinstance(v, str) and v and any(p in k.lower() for p in _SENSITIVE_KEY_PATTERNS):
                found.add(v)
            else:
                _collect_sensitive(v, found)
    elif isinstance(obj, list):
        for item in obj:
            _collect_sensitive(item, found)


def to_platform(value: Platform | str) -> Platform:
    """Parse a platform tag, raising UnsupportedPlatform for unknown ones."""
    try:
        return Platform(value)
    except ValueError:
        raise UnsupportedPlatform(f"unsupported platform: {value}") from None


class Bridge:
    """
    Holds the live platform sessions for one process.

    Built once at startup and handed to the ``EventNormalizer`` and the
    ``Responder``.  Each driver is registered under its platform; there is at
    most one session per platform.
    """

    def __init__(self, cooldown: Cooldown | None = None):
        self._drivers: dict[Platform, BaseDriver] = {}
        self.cooldown = cooldown if cooldown is not None else Cooldown()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def load_sensitive_values(self, config: dict):
        found: set[str] = set()
        _collect_sensitive(config, found)
        log.register_sensitive(frozenset(found))
        l.info(f"Loaded {len(found)} sensitive value(s) for log masking")

    def register_driver(self, driver: BaseDriver):
        if driver.platform in self._drivers:
            l.warning(f"Replacing the registered {driver.platform.value} driver")
        self._drivers[driver.platform] = driver
        l.debug(f"Registered driver for platform: {driver.platform.value}")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def driver(self, platform: Platform | str) -> BaseDriver:
        p = to_platform(platform)
        drv = self._drivers.get(p)
        if drv is None:
            raise UnsupportedPlatform(f"platform not configured: {p.value}")
        return drv

    def drivers(self) -> list[BaseDriver]:
        return list(self._drivers.values())
