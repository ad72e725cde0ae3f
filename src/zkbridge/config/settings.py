import os

from dotenv import load_dotenv

load_dotenv()


def strtobool(val):
    """Convert a string representation of truth to true (1) or false (0)."""
    val = val.lower()
    if val in ('y', 'yes', 't', 'true', 'on', '1'):
        return 1
    elif val in ('n', 'no', 'f', 'false', 'off', '0'):
        return 0
    else:
        raise ValueError(f"invalid truth value {val!r}")


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE_SIZE = int(os.getenv("LOG_FILE_SIZE", "10485760"))
LOG_DIR = os.getenv("LOG_DIR", "")

SENTRY_DSN = os.getenv("SENTRY_DSN", "")

CONFIG_PATH = os.getenv("BRIDGE_CONFIG", "config.json")
