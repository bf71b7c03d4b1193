"""Error taxonomy shared by the control plane and the standalone timer job."""

from __future__ import annotations

from typing import Any


class CtrlsysError(Exception):
    kind: str = "internal"
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "detail": self.message}


class NotFoundError(CtrlsysError):
    kind = "not_found"
    status_code = 404


class ValidationError(CtrlsysError):
    kind = "validation_error"
    status_code = 422


class BadRequestError(CtrlsysError):
    """Malformed or inconsistent request arguments (empty or mismatched ids)."""

    kind = "invalid_argument"
    status_code = 400


class InvalidTransitionError(CtrlsysError):
    """A requested state change is not in the allowed transition graph.

    ``terminal`` tells the caller whether the timer had already reached a
    terminal state (409 Conflict) or the request asked for a move between
    non-terminal states that the graph does not allow (400 Bad Request).
    """

    kind = "invalid_transition"

    def __init__(self, current: Any, target: Any, *, terminal: bool, message: str | None = None):
        self.current = current
        self.target = target
        self.terminal = terminal
        if message is None:
            if terminal:
                message = f"Timer is already {_value(current)} and cannot move to {_value(target)}"
            else:
                message = f"Invalid transition from {_value(current)} to {_value(target)}"
        super().__init__(message)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 409 if self.terminal else 400

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["current"] = _value(self.current)
        body["target"] = _value(self.target)
        body["terminal"] = self.terminal
        return body


class StoreUnavailableError(CtrlsysError):
    kind = "store_unavailable"
    status_code = 503


class ControlPlaneUnavailableError(CtrlsysError):
    kind = "control_plane_unavailable"
    status_code = 503


class ConfigError(CtrlsysError):
    kind = "config_error"
    status_code = 500


class InternalError(CtrlsysError):
    kind = "internal"
    status_code = 500


class TimerJobError(CtrlsysError):
    """Fatal failure of a standalone timer job (overrun, forced stop)."""

    kind = "timer_failed"
    status_code = 500


def _value(state: Any) -> str:
    return getattr(state, "value", str(state))
