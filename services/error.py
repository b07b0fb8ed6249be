import sys
import traceback
import services.logger as log

# Initialize logger
l = log.get_logger()

def _handle_uncaught_exceptions(exc_type, exc_value, exc_traceback):
    """Global exception handler for uncaught exceptions."""
    if issubclass(exc_type, KeyboardInterrupt):
        # Call default handler for keyboard interrupt (e.g. Ctrl+C)
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    # Log the full traceback for debugging
    l.critical(
        "Unhandled exception caught:\n"
        + ''.join(traceback.format_exception(exc_type, exc_value, exc_traceback))
    )

# Install global exception hook
sys.excepthook = _handle_uncaught_exceptions


class BridgeError(Exception):
    """Base class for every error raised by the bridge core."""


class IdentityResolutionFailed(BridgeError):
    """The author of an incoming message could not be looked up.

    Raised by event builders; the normalizer drops the event and logs it.
    """

    def __init__(self, user_id: str, reason: str = ""):
        self.user_id = user_id
        msg = f"could not resolve user {user_id!r}"
        super().__init__(f"{msg}: {reason}" if reason else msg)


class UnsupportedContext(BridgeError):
    """``respond`` was given an event whose context cannot be replied to."""


class UnsupportedPlatform(BridgeError):
    """A platform tag outside the configured set."""


class TransportError(BridgeError):
    """A platform API call failed. The native error is chained as __cause__."""

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"{platform}: {message}")
