import logging
import sys
from logging.handlers import RotatingFileHandler
import os

from zkbridge.config import settings


class ColoredFormatter(logging.Formatter):
    """Console formatter that highlights levels and bridge log prefixes"""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    SYNC_COLOR = "\033[34m"  # Blue for [SYNC]
    PUSH_COLOR = "\033[96m"  # Light cyan for [PUSH]
    API_COLOR = "\033[95m"  # Light magenta for HR API traffic

    def format(self, record):
        log_message = super().format(record)

        levelname = record.levelname
        if levelname in self.COLORS:
            colored_levelname = (
                f"{self.COLORS[levelname]}{self.BOLD}{levelname}{self.RESET}"
            )
            log_message = log_message.replace(levelname, colored_levelname, 1)

        if "[SYNC]" in log_message:
            log_message = log_message.replace(
                "[SYNC]", f"{self.SYNC_COLOR}[SYNC]{self.RESET}"
            )

        if "[PUSH]" in log_message:
            log_message = log_message.replace(
                "[PUSH]", f"{self.PUSH_COLOR}[PUSH]{self.RESET}"
            )

        if "HR API Request" in log_message or "HR API Response" in log_message:
            log_message = log_message.replace(
                "HR API", f"{self.API_COLOR}HR API{self.RESET}"
            )

        return log_message


def get_user_log_dir():
    """Get user-writable directory for log files"""
    if settings.LOG_DIR:
        log_dir = settings.LOG_DIR
    elif os.name == "nt":  # Windows
        appdata = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
        log_dir = (
            os.path.join(appdata, "ZKBridge")
            if appdata
            else os.path.join(os.path.expanduser("~"), "ZKBridge")
        )
    else:  # Unix/Linux/macOS
        log_dir = os.path.join(os.path.expanduser("~"), ".local", "share", "ZKBridge")
        if not os.access(os.path.dirname(os.path.dirname(log_dir)), os.W_OK):
            log_dir = "/tmp"

    try:
        os.makedirs(log_dir, exist_ok=True)
    except (OSError, PermissionError):
        # Last resort - current directory
        log_dir = os.getcwd()

    return log_dir


def create_log_handler():
    """Create rotating file handler for the bridge log"""
    log_file_path = os.path.join(get_user_log_dir(), "zk-hr-bridge.log")
    handler = RotatingFileHandler(
        log_file_path, maxBytes=settings.LOG_FILE_SIZE, backupCount=3
    )

    # No colors in the file
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s in %(module)s: %(message)s"
    )
    handler.setFormatter(formatter)

    return handler


def create_console_handler():
    """Create console handler with colored output"""
    console_handler = logging.StreamHandler(sys.stdout)

    colored_formatter = ColoredFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(colored_formatter)

    return console_handler


app_logger = logging.getLogger("zkbridge")

# Only add handlers once (module reloads in tests would duplicate them)
if not app_logger.handlers:
    try:
        app_logger.addHandler(create_log_handler())
    except OSError as e:
        print(f"File logging disabled: {e}", file=sys.stderr)

    app_logger.addHandler(create_console_handler())

app_logger.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))

# Prevent propagation to root logger (which might cause duplicates)
app_logger.propagate = False
