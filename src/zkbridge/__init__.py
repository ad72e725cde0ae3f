import logging

import sentry_sdk
from flask import Flask

from zkbridge.api.service import bp as service_blueprint
from zkbridge.config import settings
from zkbridge.shared.logger import create_log_handler, app_logger

__version__ = "0.1.0"


class EndpointFilter(logging.Filter):
    """Suppress noisy request logs for specific endpoints."""

    def __init__(self, *paths):
        super().__init__()
        self.paths = paths

    def filter(self, record):
        message = record.getMessage()
        return not any(path in message for path in self.paths)


def create_app(bridge_service):
    """Build the control API around a BridgeService"""
    app = Flask(__name__)
    app.config["BRIDGE_SERVICE"] = bridge_service

    try:
        app.logger.addHandler(create_log_handler())
    except OSError as e:
        app_logger.warning(f"Control API file logging disabled: {e}")
    app.logger.setLevel(logging.INFO)

    # Status polling would flood the werkzeug request log
    logging.getLogger('werkzeug').addFilter(EndpointFilter('/service/status', '/sync/status'))

    app.register_blueprint(service_blueprint)

    return app


def init_sentry():
    """Report errors to Sentry when SENTRY_DSN is set"""
    if not settings.SENTRY_DSN:
        app_logger.debug("SENTRY_DSN not set, error reporting disabled")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=0.0,
        release=f"zk-hr-bridge@{__version__}",
    )
    app_logger.info("Sentry error reporting enabled")
    return True
