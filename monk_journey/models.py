"""Core data models.

The storage adapters and the sync orchestrator exchange these types.
Pydantic is used wherever data crosses a boundary: remote listings, auth
snapshots handed to listeners, and events handed to subscribers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ValueKind = Literal["boolean", "string", "number", "structured"]

AuthStatus = Literal["signed_out", "signing_in", "signed_in"]

StorageAction = Literal["save", "delete", "update"]

DecisionKind = Literal["conflict", "enforced_login"]

# "local" / "remote" answer a conflict, "sign_in" / "skip" an enforced login.
Choice = Literal["local", "remote", "sign_in", "skip"]


class RemoteObject(BaseModel):
    """One file in the remote save folder, as returned by a listing."""

    id: str
    name: str
    modified_time: datetime | None = Field(default=None, alias="modifiedTime")
    created_time: datetime | None = Field(default=None, alias="createdTime")

    model_config = {"populate_by_name": True}


class AuthState(BaseModel):
    """Snapshot of the auth session handed to listeners."""

    status: AuthStatus = "signed_out"
    token: str | None = None
    auto_login_enabled: bool = False
    last_login: int | None = None  # epoch milliseconds

    @property
    def signed_in(self) -> bool:
        return self.status == "signed_in" and self.token is not None


class StorageEvent(BaseModel):
    """Notification emitted by the storage service to its subscribers."""

    action: StorageAction
    key: str
    value: Any = None


class SyncReport(BaseModel):
    """Outcome of one reconciliation pass, keyed lists per outcome."""

    pulled: list[str] = Field(default_factory=list)
    pushed: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    resolved_local: list[str] = Field(default_factory=list)
    resolved_remote: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    def merge(self, other: SyncReport) -> SyncReport:
        return SyncReport(**{
            name: getattr(self, name) + getattr(other, name)
            for name in type(self).model_fields
        })
