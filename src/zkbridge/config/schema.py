"""JSON schema for config.json"""

_field_mapping = {
    "type": "object",
    "additionalProperties": {"type": "string", "minLength": 1},
}

_positive_int = {"type": "integer", "minimum": 1}
_port = {"type": "integer", "minimum": 0, "maximum": 65535}

schema = {
    "type": "object",
    "properties": {
        "serviceName": {"type": "string"},
        "autoStart": {"type": "boolean"},
        # Flat device keys of the legacy config layout
        "deviceIP": {"type": "string"},
        "devicePort": _port,
        "deviceTimeout": _positive_int,
        "device": {
            "type": "object",
            "properties": {
                "ip": {"type": "string", "minLength": 1},
                "port": _port,
                "timeout": _positive_int,
                "password": {"type": "integer", "minimum": 0},
                "forceUdp": {"type": "boolean"},
                "serialNumber": {"type": ["string", "null"]},
            },
            "required": ["ip"],
        },
        "syncInterval": _positive_int,
        "batchSize": _positive_int,
        "fieldMapping": _field_mapping,
        "hrmServer": {
            "type": "object",
            "properties": {
                "baseURL": {"type": "string", "minLength": 1},
                "apiKey": {"type": "string"},
                "authScheme": {"enum": ["bearer", "api_key"]},
                "apiKeyHeader": {"type": "string", "minLength": 1},
                "timeout": _positive_int,
                "retryAttempts": _positive_int,
                "retryDelay": {"type": "integer", "minimum": 0},
                "endpoints": {
                    "type": "object",
                    "properties": {
                        "attendance": {"type": "string"},
                        "push": {"type": "string"},
                    },
                },
            },
            "required": ["baseURL"],
        },
        "push": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "host": {"type": "string"},
                "port": _port,
                "forwardMode": {"enum": ["record", "batch"]},
                "fieldMapping": _field_mapping,
                "recvTimeout": _positive_int,
            },
        },
        "sync": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "identityIncludesDevice": {"type": "boolean"},
                "pruneOnCommit": {"type": "boolean"},
            },
        },
        "api": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "host": {"type": "string"},
                "port": _port,
            },
        },
    },
    "required": ["hrmServer"],
}
