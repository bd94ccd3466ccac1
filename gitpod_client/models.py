"""Wire entities exchanged with the workspace service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PHASES = (
    "unknown",
    "preparing",
    "building",
    "pending",
    "creating",
    "initializing",
    "running",
    "interrupted",
    "stopping",
    "stopped",
)

# Instances can bounce between running and interrupted, so they share a rank.
_PHASE_RANK: Dict[str, int] = {phase: index for index, phase in enumerate(PHASES)}
_PHASE_RANK["interrupted"] = _PHASE_RANK["running"]


class WireModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python, unknown keys kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Email(WireModel):
    address: str
    verified: Optional[bool] = None
    primary: Optional[bool] = None


class Identity(WireModel):
    """An account at an auth provider linked to a user."""

    auth_provider_id: str
    auth_id: str
    auth_name: str
    primary_email: Optional[str] = None
    additional_emails: List[Email] = Field(default_factory=list)
    deleted: Optional[bool] = None
    readonly: Optional[bool] = None

    @field_validator("primary_email", mode="before")
    @classmethod
    def _empty_email_is_missing(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("additional_emails", mode="before")
    @classmethod
    def _ignore_invalid_emails(cls, value: object) -> object:
        # Older records reused this field for something else; treat those as empty.
        if not isinstance(value, list):
            return []
        if not all(isinstance(item, dict) and isinstance(item.get("address"), str) for item in value):
            return []
        return value


class User(WireModel):
    id: str
    creation_date: Optional[str] = None
    avatar_url: Optional[str] = None
    name: Optional[str] = None
    full_name: Optional[str] = None
    identities: List[Identity] = Field(default_factory=list)
    blocked: Optional[bool] = None
    feature_flags: Optional[Dict[str, Any]] = None
    roles_or_permissions: Optional[List[str]] = None
    additional_data: Optional[Dict[str, Any]] = None
    marked_deleted: Optional[bool] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.name or self.id

    @property
    def primary_email(self) -> Optional[str]:
        for identity in self.identities:
            if identity.primary_email and not identity.deleted:
                return identity.primary_email
        return None


class WorkspaceContext(WireModel):
    title: str = ""
    normalized_context_url: Optional[str] = Field(default=None, alias="normalizedContextURL")
    referrer: Optional[str] = None
    referrer_ide: Optional[str] = None


class Workspace(WireModel):
    id: str
    creation_time: Optional[str] = None
    context_url: str = Field(default="", alias="contextURL")
    description: str = ""
    owner_id: Optional[str] = None
    type: str = "regular"
    context: WorkspaceContext = Field(default_factory=WorkspaceContext)
    pinned: Optional[bool] = None
    shareable: Optional[bool] = None
    deleted: Optional[bool] = None
    soft_deleted: Optional[str] = None


class WorkspaceInstanceConditions(WireModel):
    failed: Optional[str] = None
    timeout: Optional[str] = None
    pulling_images: Optional[bool] = None
    deployed: Optional[bool] = None
    first_user_activity: Optional[str] = None


class WorkspaceInstanceStatus(WireModel):
    phase: str = "unknown"
    conditions: WorkspaceInstanceConditions = Field(default_factory=WorkspaceInstanceConditions)
    message: Optional[str] = None
    url: Optional[str] = None
    owner_token: Optional[str] = None
    timeout: Optional[str] = None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class WorkspaceInstance(WireModel):
    """One run of a workspace."""

    id: str
    workspace_id: str
    creation_time: Optional[str] = None
    started_time: Optional[str] = None
    deployed_time: Optional[str] = None
    stopped_time: Optional[str] = None
    last_heartbeat: Optional[str] = None
    ide_url: str = ""
    region: Optional[str] = None
    workspace_image: Optional[str] = None
    status: WorkspaceInstanceStatus = Field(default_factory=WorkspaceInstanceStatus)

    @property
    def phase(self) -> str:
        return self.status.phase

    @staticmethod
    def is_up_to_date(current: Optional["WorkspaceInstance"], update: "WorkspaceInstance") -> bool:
        """Return ``True`` when ``update`` carries nothing newer than ``current``."""

        if current is None:
            return False
        if current.id != update.id:
            current_created = _parse_timestamp(current.creation_time)
            update_created = _parse_timestamp(update.creation_time)
            if current_created is None or update_created is None:
                return False
            return current_created >= update_created
        current_rank = _PHASE_RANK.get(current.phase, 0)
        update_rank = _PHASE_RANK.get(update.phase, 0)
        if current_rank != update_rank:
            return current_rank > update_rank
        return current == update


class WorkspaceInfo(WireModel):
    workspace: Workspace
    latest_instance: Optional[WorkspaceInstance] = None


class SendHeartBeatOptions(WireModel):
    instance_id: str = Field(..., min_length=1)
    was_closed: Optional[bool] = None
    round_trip_time: Optional[float] = Field(default=None, ge=0)

    @field_validator("instance_id")
    @classmethod
    def _normalise_instance_id(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("instance_id must not be empty")
        return stripped


class GetWorkspacesOptions(WireModel):
    search_string: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    pinned_only: Optional[bool] = None
    include_headless: Optional[bool] = None


__all__ = [
    "Email",
    "GetWorkspacesOptions",
    "Identity",
    "PHASES",
    "SendHeartBeatOptions",
    "User",
    "WireModel",
    "Workspace",
    "WorkspaceContext",
    "WorkspaceInfo",
    "WorkspaceInstance",
    "WorkspaceInstanceConditions",
    "WorkspaceInstanceStatus",
]
