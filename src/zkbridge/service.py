#!/usr/bin/env python3
"""
ZK HR Bridge - standalone service wiring the sync engine, the push listener
and the control API.
"""

import argparse
import signal
import sys
import threading
from typing import Optional

import requests

from zkbridge import create_app, init_sentry
from zkbridge.config.config_manager import BridgeConfig, config_manager
from zkbridge.exceptions import ConfigError
from zkbridge.services.device_client import DeviceClient, ZKDeviceClient
from zkbridge.services.field_mapper import FieldMapper
from zkbridge.services.hr_forwarder import HRForwarder
from zkbridge.services.push_listener import PushListener
from zkbridge.services.sync_service import PollingSyncEngine
from zkbridge.services.sync_state import SyncState
from zkbridge.shared.logger import app_logger


class BridgeService:
    def __init__(
        self,
        config: BridgeConfig,
        device_client: Optional[DeviceClient] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.forwarder = HRForwarder(config.hrm, session=session)
        self.state = SyncState(
            identity_includes_device=config.sync.identity_includes_device,
            prune_on_commit=config.sync.prune_on_commit,
        )

        self.engine: Optional[PollingSyncEngine] = None
        if config.sync.enabled and (config.device or device_client):
            client = device_client or ZKDeviceClient(config.device)
            self.engine = PollingSyncEngine(
                client=client,
                forwarder=self.forwarder,
                mapper=FieldMapper(config.sync.field_mapping, device_id=client.identifier),
                state=self.state,
                batch_size=config.sync.batch_size,
                interval_seconds=config.sync.interval_ms / 1000,
            )
        else:
            app_logger.info("No pull device configured, polling sync disabled")

        self.listener: Optional[PushListener] = None
        if config.push.enabled:
            self.listener = PushListener(
                forwarder=self.forwarder,
                # Peer address stands in for deviceId on pushed records
                mapper=FieldMapper(config.push.field_mapping),
                host=config.push.host,
                port=config.push.port,
                forward_mode=config.push.forward_mode,
                path=config.hrm.push_path,
                recv_timeout=config.push.recv_timeout_ms / 1000,
            )

        self.running = False
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def start(self):
        with self._lock:
            if self.running:
                app_logger.warning("Bridge is already running")
                return

            app_logger.info(f"Starting {self.config.service_name}...")
            self.forwarder.reopen()
            self._stopped.clear()

            if self.listener:
                self.listener.start()
            if self.engine:
                self.engine.start()

            self.running = True
            app_logger.info("Bridge started")

    def stop(self):
        with self._lock:
            if not self.running:
                return

            app_logger.info("Stopping bridge...")
            # Cut off pending retry waits first
            self.forwarder.close()

            if self.listener:
                try:
                    self.listener.stop()
                except Exception as e:
                    app_logger.error(f"Error stopping push listener: {e}")

            if self.engine:
                try:
                    self.engine.stop()
                except Exception as e:
                    app_logger.error(f"Error stopping sync engine: {e}")

            self.running = False
            self._stopped.set()
            app_logger.info("Bridge stopped gracefully.")

    def wait(self):
        """Block until stop() is called"""
        self._stopped.wait()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="zk-hr-bridge",
        description="Deliver ZKTeco attendance punches to an HR API",
    )
    parser.add_argument("-c", "--config", help="Path to config.json (default: $BRIDGE_CONFIG or ./config.json)")
    parser.add_argument("--once", action="store_true", help="Run a single sync cycle and exit")
    parser.add_argument("--no-api", action="store_true", help="Do not serve the control API")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    init_sentry()

    try:
        config = config_manager.load(args.config)
    except ConfigError as e:
        app_logger.error(f"FATAL: {e}")
        return 1

    service = BridgeService(config)

    if args.once:
        if service.engine is None:
            app_logger.error("--once needs a pull device in the configuration")
            return 1
        result = service.engine.run_cycle()
        return 0 if result.success else 1

    def signal_handler(signum, frame):
        app_logger.info(f"Received signal {signum}")
        service.stop()
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    if config.auto_start:
        service.start()
    else:
        app_logger.info("autoStart disabled, waiting for POST /service/start")

    if config.api.enabled and not args.no_api:
        app = create_app(service)
        app_logger.info(f"Control API starting on {config.api.host}:{config.api.port}")
        app.run(host=config.api.host, port=config.api.port, debug=False, use_reloader=False)
    else:
        service.wait()

    return 0


if __name__ == "__main__":
    sys.exit(main())
