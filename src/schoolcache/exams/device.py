"""
Device key management for multi-device exam access.

Each device holds one RSA key pair. The public half is registered with
the backend so exams can be sealed for this device; the private half
never leaves the keyring file.
"""

from __future__ import annotations

import base64
import os
import platform
import time
from pathlib import Path
from typing import Any, Callable

import orjson
from cryptography.hazmat.primitives.asymmetric import rsa

from schoolcache.config import Settings
from schoolcache.exams.crypto import (
    export_private_key,
    export_public_key,
    generate_device_key_pair,
    import_private_key,
    import_public_key,
)
from schoolcache.exceptions import DeviceNotInitializedError
from schoolcache.logging import get_logger
from schoolcache.types import DeviceInfo, now_ms

logger = get_logger(__name__)

DEVICE_ID_LENGTH = 32


def generate_device_id() -> str:
    """Derive a stable identifier from host characteristics."""
    data = "|".join(
        [
            platform.python_implementation(),
            platform.system(),
            platform.machine(),
            platform.node(),
            str(time.timezone),
        ]
    )
    return base64.b64encode(data.encode("utf-8")).decode("ascii")[:DEVICE_ID_LENGTH]


def get_device_name() -> str:
    """Human-readable device label, e.g. ``CPython on Linux``."""
    system = platform.system() or "Unknown"
    if system == "Darwin":
        system = "macOS"
    return f"{platform.python_implementation()} on {system}"


class DeviceKeyring:
    """File-backed store for this device's key pair and identity."""

    def __init__(self, path: str | Path, clock: Callable[[], int] = now_ms) -> None:
        self.path = Path(path)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> DeviceKeyring:
        return cls(settings.device_file_path)

    def _load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        return orjson.loads(self.path.read_bytes())

    def _save(self, payload: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(self.path)

    def initialize(self) -> DeviceInfo:
        """Create the device keys on first use, otherwise mark the device active."""
        payload = self._load()

        if payload is None:
            private_key = generate_device_key_pair()
            public_key = export_public_key(private_key.public_key())
            now = self._clock()
            info = DeviceInfo(
                device_id=generate_device_id(),
                device_name=get_device_name(),
                public_key=public_key,
                registered_at=now,
                last_active=now,
            )
            self._save(
                {
                    "keys": {
                        "public_key": public_key,
                        "private_key": export_private_key(private_key),
                    },
                    "info": info.to_dict(),
                }
            )
            logger.info("Device registered", device_id=info.device_id)
            return info

        info = DeviceInfo.from_dict(payload["info"])
        info.last_active = self._clock()
        payload["info"] = info.to_dict()
        self._save(payload)
        return info

    def info(self) -> DeviceInfo | None:
        payload = self._load()
        return DeviceInfo.from_dict(payload["info"]) if payload else None

    def _keys(self) -> dict[str, str]:
        payload = self._load()
        if payload is None:
            raise DeviceNotInitializedError(
                "Device not initialized", context={"path": str(self.path)}
            )
        return payload["keys"]

    def public_key_string(self) -> str:
        return self._keys()["public_key"]

    def public_key(self) -> rsa.RSAPublicKey:
        return import_public_key(self._keys()["public_key"])

    def private_key(self) -> rsa.RSAPrivateKey:
        return import_private_key(self._keys()["private_key"])

    def reset(self) -> None:
        """Forget this device's keys and identity."""
        self.path.unlink(missing_ok=True)
        logger.info("Device keys reset", path=str(self.path))
