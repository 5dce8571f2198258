"""Publishing settings.

Settings are loaded once (from a dict, a YAML file or ``GRADESYNC_*``
environment variables) and passed to the orchestrator explicitly.

Booleans and timeouts accept the loose spellings administrators type into
settings forms: ``yes``/``no``, ``on``/``off``, ``1``/``0``,
``true``/``false``.  A timeout of ``""``, ``"no"`` or ``"false"`` means
no timeout.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

DEFAULT_FORMAT_TYPE = "instructure_csv"
ENV_PREFIX = "GRADESYNC_"

_TRUE = {"1", "true", "yes", "on", "t", "y"}
_FALSE = {"0", "false", "no", "off", "f", "n", ""}


def parse_bool(value: Any, default: bool = False) -> bool:
    """Interpret *value* as a boolean.

    Raises:
        ValueError: the string is not a recognised spelling.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def parse_timeout(value: Any) -> float | None:
    """Seconds as a float, or ``None`` for "no timeout"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    if text in _FALSE:
        return None
    return float(text)


@dataclass
class PublishingSettings:
    """How (and whether) final grades are published to the SIS."""
    enabled: bool = False
    format_type: str = DEFAULT_FORMAT_TYPE
    publish_endpoint: str = ""
    success_timeout_seconds: float | None = None
    wait_for_success: bool = False
    request_timeout_seconds: float = 30.0

    @property
    def should_kick_off_timeout(self) -> bool:
        """Only a positive timeout combined with waiting arms the expiry job."""
        return bool(self.success_timeout_seconds and self.success_timeout_seconds > 0) and self.wait_for_success

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "PublishingSettings":
        # Legacy plugin settings call the timeout "success_timeout".
        timeout = d.get("success_timeout_seconds", d.get("success_timeout"))
        request_timeout = parse_timeout(d.get("request_timeout_seconds"))
        return cls(
            enabled=parse_bool(d.get("enabled")),
            format_type=str(d.get("format_type") or DEFAULT_FORMAT_TYPE),
            publish_endpoint=str(d.get("publish_endpoint") or ""),
            success_timeout_seconds=parse_timeout(timeout),
            wait_for_success=parse_bool(d.get("wait_for_success")),
            request_timeout_seconds=request_timeout if request_timeout else 30.0,
        )

    @classmethod
    def from_yaml(cls, path: Path | str) -> "PublishingSettings":
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping of settings")
        # Accept either a bare mapping or one nested under "grade_export".
        return cls.from_dict(data.get("grade_export", data))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PublishingSettings":
        environ = os.environ if environ is None else environ
        data = {
            key[len(ENV_PREFIX):].lower(): value
            for key, value in environ.items()
            if key.startswith(ENV_PREFIX)
        }
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "format_type": self.format_type,
            "publish_endpoint": self.publish_endpoint,
            "success_timeout_seconds": self.success_timeout_seconds,
            "wait_for_success": self.wait_for_success,
            "request_timeout_seconds": self.request_timeout_seconds,
        }
