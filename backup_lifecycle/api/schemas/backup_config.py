"""Schemas for the persisted backup configuration."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from backup_lifecycle.backend.services.lifecycle.credentials import RemoteCredential
from backup_lifecycle.backend.services.lifecycle.schedule_trigger import build_cron_trigger

DEFAULT_SCHEDULE = "0 0 * * 6"
DEFAULT_KEEP_LAST = 4


class RemoteCredentialSchema(BaseModel):
    """OAuth2 token pair as persisted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    access_token: str = Field("", description="OAuth2 access token")
    refresh_token: Optional[str] = Field(None, description="OAuth2 refresh token")
    expiry: Optional[datetime] = Field(None, description="Access token expiry (informational)")

    @model_validator(mode="before")
    @classmethod
    def _accept_expiry_date(cls, data: Any) -> Any:
        """Map the `expiry_date` (epoch ms) token spelling onto `expiry`."""

        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw = data.pop("expiry_date", None)
        raw = data.pop("expiryDate", raw)
        if raw is not None and data.get("expiry") is None:
            data["expiry"] = RemoteCredential.from_dict({"expiry_date": raw}).expiry
        return data

    @classmethod
    def from_credential(cls, credential: RemoteCredential) -> "RemoteCredentialSchema":
        return cls(
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            expiry=credential.expiry,
        )

    def to_credential(self) -> RemoteCredential:
        return RemoteCredential.from_dict(self.model_dump())


class BackupConfig(BaseModel):
    """Backup lifecycle configuration."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    enabled: bool = Field(True, description="Whether scheduled backups are enabled")
    schedule: str = Field(DEFAULT_SCHEDULE, description="5-field crontab expression (UTC)")
    keep_last: int = Field(DEFAULT_KEEP_LAST, ge=1, description="Snapshots kept per store")
    remote_enabled: bool = Field(False, description="Mirror snapshots to the remote store")
    remote_credential: Optional[RemoteCredentialSchema] = Field(None, description="Remote OAuth2 credential")

    @field_validator("schedule")
    @classmethod
    def _validate_schedule(cls, value: str) -> str:
        normalized = " ".join(str(value or "").split())
        build_cron_trigger(normalized)
        return normalized

    def credential(self) -> Optional[RemoteCredential]:
        """Return the configured credential, or None when there is no access token."""

        if self.remote_credential is None or not self.remote_credential.access_token:
            return None
        return self.remote_credential.to_credential()
