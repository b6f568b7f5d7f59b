"""Validated runtime settings."""

from __future__ import annotations

from pydantic import BaseModel, Field

# Keys a user may persist through ``tidy config set``.
USER_PREFERENCE_KEYS = frozenset(
    {
        "app_timeout_enabled",
        "undo_close_enabled",
        "app_timeout_seconds",
        "undo_ttl_seconds",
        "protect_audio_apps",
    }
)


class TidySettings(BaseModel):
    """Effective settings after YAML defaults and persisted preferences are merged."""

    app_timeout_enabled: bool = True
    undo_close_enabled: bool = True
    app_timeout_seconds: int = Field(default=300, gt=0)
    undo_ttl_seconds: int = Field(default=5, gt=0)
    protect_audio_apps: bool = True

    scan_interval_seconds: float = Field(default=5.0, gt=0)
    grace_period_seconds: float = Field(default=2.0, ge=0)
    window_poll_seconds: float = Field(default=1.0, gt=0)
    lifecycle_poll_seconds: float = Field(default=1.0, gt=0)
    path_lookup_timeout_seconds: float = Field(default=3.0, gt=0)

    host_app_id: str = "com.apple.finder"
    host_app_name: str = "Finder"
    self_app_ids: list[str] = Field(default_factory=list)
