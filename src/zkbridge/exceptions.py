"""Error taxonomy for the attendance pipeline.

Nothing here is fatal at runtime: the sync engine and the push listener catch
these, log them and carry on. Only ``ConfigError`` during startup stops the
process.
"""


class BridgeError(Exception):
    """Base class for bridge errors"""


class ConfigError(BridgeError):
    """Configuration file missing, unreadable or invalid"""


class DevicePullError(BridgeError):
    """Device answered but the attendance log could not be read"""


class DeliveryError(BridgeError):
    """HR endpoint rejected a request or could not be reached"""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class PushDecodeError(BridgeError):
    """Push payload could not be decoded"""
