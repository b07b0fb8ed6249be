import inspect
from typing import Any, Awaitable, Callable

import services.logger as log
from services.bridge import Bridge
from services.error import IdentityResolutionFailed
from services.message import Event

l = log.get_logger()

Callback = Callable[[Event], Awaitable[None] | None]


class EventNormalizer:
    """
    Subscribes to every native event the bridge's drivers know how to
    normalize and forwards one canonical ``Event`` per native event to the
    application callback.

    Forwarding happens inside the driver's own dispatch task: there is no
    queue, so events from one platform reach the callback in the order the
    platform delivered them.  The two platforms are not ordered relative to
    each other.
    """

    def __init__(self, bridge: Bridge):
        self.bridge = bridge

    def register(self, callback: Callback) -> None:
        for driver in self.bridge.drivers():
            table = driver.normalizers()
            for native_event, build in table.items():
                driver.subscribe(native_event, self._forwarder(native_event, build, callback))
            l.info(f"Listening to {len(table)} {driver.platform.value} event type(s)")

    @staticmethod
    def _forwarder(native_event: str, build, callback: Callback):
        async def forward(*args: Any) -> None:
            try:
                event = await build(*args)
            except IdentityResolutionFailed as e:
                l.warning(f"Dropped '{native_event}' event: {e}")
                return
            if event is None:
                return
            result = callback(event)
            if inspect.isawaitable(result):
                await result

        return forward
