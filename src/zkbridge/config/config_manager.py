import copy
import json
import os
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from jsonschema import validate as jsonschema_validate
from jsonschema.exceptions import ValidationError

from zkbridge.config import settings
from zkbridge.config.settings import strtobool
from zkbridge.config.schema import schema as config_schema
from zkbridge.exceptions import ConfigError

DEFAULT_FIELD_MAPPING = {
    "employeeId": "deviceUserId",
    "timestamp": "recordTime",
    "type": "attendanceType",
    "deviceId": "deviceId",
}

DEFAULT_PUSH_FIELD_MAPPING = {
    "SN": "serialNumber",
    "scan_time": "recordTime",
    "employee_code": "deviceUserId",
    "ip": "deviceId",
}


@dataclass
class DeviceConfig:
    """Pull device connection settings"""

    ip: str
    port: int = 4370
    timeout_ms: int = 5000
    password: int = 0
    force_udp: bool = False
    serial_number: Optional[str] = None

    @property
    def timeout_seconds(self) -> int:
        # pyzk takes whole seconds
        return max(1, round(self.timeout_ms / 1000))


@dataclass
class HRServerConfig:
    """HR endpoint and delivery policy"""

    base_url: str
    api_key: str = ""
    auth_scheme: str = "bearer"  # 'bearer' or 'api_key'
    api_key_header: str = "x-api-key"
    timeout_ms: int = 10000
    retry_attempts: int = 3
    retry_delay_ms: int = 5000
    attendance_path: str = "/attendance"
    push_path: Optional[str] = None


@dataclass
class PushConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 4370
    forward_mode: str = "record"  # 'record' or 'batch'
    field_mapping: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_PUSH_FIELD_MAPPING)
    )
    recv_timeout_ms: int = 2000


@dataclass
class SyncConfig:
    enabled: bool = True
    interval_ms: int = 60000
    batch_size: int = 50
    field_mapping: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_FIELD_MAPPING)
    )
    identity_includes_device: bool = False
    prune_on_commit: bool = True


@dataclass
class ApiConfig:
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 57575


@dataclass
class BridgeConfig:
    """Complete bridge configuration"""

    hrm: HRServerConfig
    device: Optional[DeviceConfig] = None
    push: PushConfig = field(default_factory=PushConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    service_name: str = "ZK HR Bridge"
    auto_start: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Validate a raw config mapping and build the typed configuration"""
        try:
            jsonschema_validate(instance=data, schema=config_schema)
        except ValidationError as e:
            location = "/".join(str(part) for part in e.absolute_path) or "<root>"
            raise ConfigError(f"Invalid configuration at {location}: {e.message}")

        hrm_data = data["hrmServer"]
        endpoints = hrm_data.get("endpoints", {})
        hrm = HRServerConfig(
            base_url=hrm_data["baseURL"].rstrip("/"),
            api_key=hrm_data.get("apiKey", ""),
            auth_scheme=hrm_data.get("authScheme", "bearer"),
            api_key_header=hrm_data.get("apiKeyHeader", "x-api-key"),
            timeout_ms=hrm_data.get("timeout", 10000),
            retry_attempts=hrm_data.get("retryAttempts", 3),
            retry_delay_ms=hrm_data.get("retryDelay", 5000),
            attendance_path=endpoints.get("attendance", "/attendance"),
            push_path=endpoints.get("push"),
        )

        device = None
        device_data = data.get("device")
        if device_data:
            device = DeviceConfig(
                ip=device_data["ip"],
                port=device_data.get("port", 4370),
                timeout_ms=device_data.get("timeout", 5000),
                password=device_data.get("password", 0),
                force_udp=device_data.get("forceUdp", False),
                serial_number=device_data.get("serialNumber"),
            )
        elif data.get("deviceIP"):
            device = DeviceConfig(
                ip=data["deviceIP"],
                port=data.get("devicePort", 4370),
                timeout_ms=data.get("deviceTimeout", 5000),
            )

        push_data = data.get("push", {})
        push = PushConfig(
            enabled=push_data.get("enabled", True),
            host=push_data.get("host", "0.0.0.0"),
            port=push_data.get("port", 4370),
            forward_mode=push_data.get("forwardMode", "record"),
            field_mapping=push_data.get(
                "fieldMapping", dict(DEFAULT_PUSH_FIELD_MAPPING)
            ),
            recv_timeout_ms=push_data.get("recvTimeout", 2000),
        )

        sync_data = data.get("sync", {})
        sync = SyncConfig(
            enabled=sync_data.get("enabled", True),
            interval_ms=data.get("syncInterval", 60000),
            batch_size=data.get("batchSize", 50),
            field_mapping=data.get("fieldMapping", dict(DEFAULT_FIELD_MAPPING)),
            identity_includes_device=sync_data.get("identityIncludesDevice", False),
            prune_on_commit=sync_data.get("pruneOnCommit", True),
        )

        api_data = data.get("api", {})
        api = ApiConfig(
            enabled=api_data.get("enabled", True),
            host=api_data.get("host", "127.0.0.1"),
            port=api_data.get("port", 57575),
        )

        return cls(
            hrm=hrm,
            device=device,
            push=push,
            sync=sync,
            api=api,
            service_name=data.get("serviceName", "ZK HR Bridge"),
            auto_start=data.get("autoStart", True),
        )


class ConfigManager:
    """Loads config.json and applies environment overrides"""

    def __init__(self):
        self._config: Optional[BridgeConfig] = None

    def load(self, path: Optional[str] = None) -> BridgeConfig:
        config_path = os.path.abspath(path or settings.CONFIG_PATH)
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ConfigError(f"Configuration file not found: {config_path}")
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to read {config_path}: {type(e).__name__}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be an object: {config_path}")

        self._config = BridgeConfig.from_dict(self.apply_env_overrides(data))
        return self._config

    def get_config(self) -> BridgeConfig:
        if self._config is None:
            return self.load()
        return self._config

    @staticmethod
    def apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``data`` with DEVICE_*, HRM_*, *_PORT overrides applied"""
        data = copy.deepcopy(data)

        try:
            legacy_device = "device" not in data and "deviceIP" in data
            if os.getenv("DEVICE_IP"):
                if legacy_device:
                    data["deviceIP"] = os.getenv("DEVICE_IP")
                else:
                    data.setdefault("device", {})["ip"] = os.getenv("DEVICE_IP")
            if os.getenv("DEVICE_PORT"):
                if legacy_device:
                    data["devicePort"] = int(os.getenv("DEVICE_PORT"))
                elif "device" in data:
                    data["device"]["port"] = int(os.getenv("DEVICE_PORT"))
            if os.getenv("HRM_BASE_URL"):
                data.setdefault("hrmServer", {})["baseURL"] = os.getenv("HRM_BASE_URL")
            if os.getenv("HRM_API_KEY"):
                data.setdefault("hrmServer", {})["apiKey"] = os.getenv("HRM_API_KEY")
            if os.getenv("PUSH_PORT"):
                data.setdefault("push", {})["port"] = int(os.getenv("PUSH_PORT"))
            if os.getenv("API_PORT"):
                data.setdefault("api", {})["port"] = int(os.getenv("API_PORT"))
            if os.getenv("SYNC_INTERVAL"):
                data["syncInterval"] = int(os.getenv("SYNC_INTERVAL"))
            if os.getenv("AUTO_START"):
                data["autoStart"] = bool(strtobool(os.getenv("AUTO_START")))
        except ValueError as e:
            raise ConfigError(f"Invalid environment override: {e}")

        return data


# Singleton instance
config_manager = ConfigManager()
