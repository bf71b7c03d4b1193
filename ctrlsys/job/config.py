"""Environment surface of a standalone timer job."""

import json
import os
import uuid
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field

from ctrlsys.domain.timer_state import MAX_DURATION_SECONDS, MIN_DURATION_SECONDS
from ctrlsys.errors import ConfigError

DEFAULT_RPC_PORT = 50051
MIN_UPDATE_INTERVAL_MS = 100
MAX_UPDATE_INTERVAL_MS = 60000


class JobConfig(BaseModel):
    timer_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "default-timer"
    duration_seconds: int = Field(..., ge=MIN_DURATION_SECONDS, le=MAX_DURATION_SECONDS)
    labels: Dict[str, str] = Field(default_factory=dict)
    created_by: str = "system"
    control_plane_endpoint: str
    control_plane_token: Optional[str] = None
    rpc_port: int = Field(DEFAULT_RPC_PORT, ge=1, le=65535)
    log_level: str = "info"
    update_interval_ms: int = Field(1000, ge=MIN_UPDATE_INTERVAL_MS, le=MAX_UPDATE_INTERVAL_MS)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "JobConfig":
        """Read the job configuration; any bad value raises :class:`ConfigError` naming the variable."""
        env = os.environ if environ is None else environ
        values = {}

        def opt(name: str) -> Optional[str]:
            raw = env.get(name)
            return raw if raw else None

        if opt("TIMER_ID"):
            values["timer_id"] = env["TIMER_ID"]
        if opt("TIMER_NAME"):
            values["name"] = env["TIMER_NAME"]
        if opt("TIMER_CREATED_BY"):
            values["created_by"] = env["TIMER_CREATED_BY"]

        raw_duration = opt("TIMER_DURATION_SECONDS")
        if raw_duration is None:
            raise ConfigError("TIMER_DURATION_SECONDS environment variable is required")
        values["duration_seconds"] = _parse_int("TIMER_DURATION_SECONDS", raw_duration)
        if not MIN_DURATION_SECONDS <= values["duration_seconds"] <= MAX_DURATION_SECONDS:
            raise ConfigError(
                f"TIMER_DURATION_SECONDS must be between {MIN_DURATION_SECONDS} and {MAX_DURATION_SECONDS} (24 hours)"
            )

        if opt("TIMER_LABELS"):
            try:
                labels = json.loads(env["TIMER_LABELS"])
            except json.JSONDecodeError as exc:
                raise ConfigError(f"TIMER_LABELS must be valid JSON object: {exc}") from exc
            if not isinstance(labels, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in labels.items()
            ):
                raise ConfigError("TIMER_LABELS must be a JSON object of string values")
            values["labels"] = labels

        endpoint = opt("CONTROL_PLANE_ENDPOINT")
        if endpoint is None:
            raise ConfigError("CONTROL_PLANE_ENDPOINT environment variable is required")
        if not endpoint.startswith(("http://", "https://")):
            raise ConfigError("CONTROL_PLANE_ENDPOINT must start with http:// or https://")
        values["control_plane_endpoint"] = endpoint.rstrip("/")
        values["control_plane_token"] = opt("CONTROL_PLANE_TOKEN")

        port_var = "RPC_PORT" if opt("RPC_PORT") else "GRPC_PORT"
        if opt(port_var):
            port = _parse_int(port_var, env[port_var])
            if not 1 <= port <= 65535:
                raise ConfigError(f"{port_var} must be a valid port number")
            values["rpc_port"] = port

        if opt("LOG_LEVEL"):
            values["log_level"] = env["LOG_LEVEL"]

        if opt("UPDATE_INTERVAL_MS"):
            interval = _parse_int("UPDATE_INTERVAL_MS", env["UPDATE_INTERVAL_MS"])
            if not MIN_UPDATE_INTERVAL_MS <= interval <= MAX_UPDATE_INTERVAL_MS:
                raise ConfigError(
                    f"UPDATE_INTERVAL_MS must be between {MIN_UPDATE_INTERVAL_MS} and {MAX_UPDATE_INTERVAL_MS}"
                )
            values["update_interval_ms"] = interval

        return cls(**values)

    @property
    def is_debug(self) -> bool:
        return self.log_level.lower() in ("debug", "trace")

    @property
    def bind_address(self) -> str:
        return f"0.0.0.0:{self.rpc_port}"

    @property
    def update_interval(self) -> float:
        return self.update_interval_ms / 1000.0

    @property
    def python_log_level(self) -> str:
        level = self.log_level.upper()
        return "DEBUG" if level == "TRACE" else level


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a valid number, got {raw!r}") from None
