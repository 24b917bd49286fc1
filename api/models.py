"""
Lab Pool — API Models

Request dataclasses for the API server. No FastAPI dependency; the
server builds them from the JSON body with from_body() and rejects the
request with 422 when validate() returns anything.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any

from workpool.types import Urgency


def _required_str(value: Any, name: str) -> list[str]:
    if not value or not isinstance(value, str) or not value.strip():
        return [f"{name}: required and must be a non-empty string"]
    return []


@dataclass
class WorkerAction:
    """POST /v1/pool/items/{id}/claim or /start body."""
    worker_id: str

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> WorkerAction:
        return cls(worker_id=body.get("worker_id", ""))

    def validate(self) -> list[str]:
        return _required_str(self.worker_id, "worker_id")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CompleteRequest:
    """POST /v1/pool/items/{id}/complete body. Result entries are checked by the pool."""
    worker_id: str
    results: Any = None
    notes: str = ""

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> CompleteRequest:
        return cls(
            worker_id=body.get("worker_id", ""),
            results=body.get("results"),
            notes=body.get("notes") or "",
        )

    def validate(self) -> list[str]:
        errors = _required_str(self.worker_id, "worker_id")
        if not isinstance(self.notes, str):
            errors.append("notes: must be a string")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CancelRequest:
    """POST /v1/pool/items/{id}/cancel body."""
    worker_id: str
    reason: str = ""

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> CancelRequest:
        return cls(worker_id=body.get("worker_id", ""), reason=body.get("reason", ""))

    def validate(self) -> list[str]:
        return (
            _required_str(self.worker_id, "worker_id")
            + _required_str(self.reason, "reason")
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AdminCancelRequest:
    """POST /v1/pool/items/{id}/admin-cancel body."""
    admin_id: str
    reason: str = ""

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> AdminCancelRequest:
        return cls(admin_id=body.get("admin_id", ""), reason=body.get("reason", ""))

    def validate(self) -> list[str]:
        return (
            _required_str(self.admin_id, "admin_id")
            + _required_str(self.reason, "reason")
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CreateItemRequest:
    """POST /v1/pool/items body (upstream order workflow)."""
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    urgency: str = Urgency.ROUTINE.value
    group_id: str = ""
    eligible: bool = True

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> CreateItemRequest:
        return cls(
            kind=body.get("kind", ""),
            payload=body.get("payload") if body.get("payload") is not None else {},
            urgency=body.get("urgency") or Urgency.ROUTINE.value,
            group_id=body.get("group_id") or "",
            eligible=body.get("eligible", True),
        )

    def validate(self) -> list[str]:
        errors = _required_str(self.kind, "kind")
        if not isinstance(self.payload, dict):
            errors.append("payload: must be an object")
        if str(self.urgency).upper() not in {u.value for u in Urgency}:
            errors.append(f"urgency: must be one of {[u.value for u in Urgency]}")
        if not isinstance(self.group_id, str):
            errors.append("group_id: must be a string")
        if not isinstance(self.eligible, bool):
            errors.append("eligible: must be a boolean")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
