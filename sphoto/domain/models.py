from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


Platform = Literal["immich", "nextcloud"]
InstanceStatus = Literal["active", "stopped", "deleted"]
SessionState = Literal["pending", "processing", "complete", "error", "unknown"]
ExportStatus = Literal["pending", "processing", "completed", "failed"]
AlertType = Literal[
    "storage_80",
    "storage_90",
    "storage_100",
    "inactive",
    "churn_risk",
    "instance_down",
    "ssl_expiry",
]
MaintenanceType = Literal["update", "backup", "migration", "emergency"]
MaintenanceStatus = Literal["scheduled", "in_progress", "completed", "cancelled"]
SharedTier = Literal["free", "basic", "pro"]
SharedInstanceKey = Literal["free", "paid"]
SharedUserStatus = Literal["active", "pending_deletion", "deleted"]


class Branding(BaseModel):
    # Per-instance white-label settings rendered into custom CSS.
    logo_url: str | None = None
    primary_color: str | None = None
    welcome_message: str | None = None
    favicon_url: str | None = None
    app_name: str | None = None


class InstanceMetadata(BaseModel):
    # Durable record for one dedicated tenant deployment.
    id: str
    email: str
    platform: Platform = "immich"
    plan: str
    storage_gb: int
    status: InstanceStatus = "active"
    created: datetime
    stopped_at: datetime | None = None
    initial_password: str | None = None
    api_key: str | None = None
    admin_user: str | None = None
    branding: Branding | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    pending_plan: str | None = None
    pending_storage_gb: int | None = None
    plan_effective_at: datetime | None = None


class SharedUser(BaseModel):
    # Account on a pooled container for the shared deployment mode.
    id: str
    visible_id: str
    email: str
    app_user_id: str
    tier: SharedTier
    instance: SharedInstanceKey
    quota_gb: int
    status: SharedUserStatus = "active"
    created: datetime
    deletion_requested_at: datetime | None = None
    deletion_scheduled_for: datetime | None = None
    portal_token: str | None = None
    portal_token_expires_at: datetime | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    last_export_at: datetime | None = None


class SessionStatus(BaseModel):
    # Provisioning progress visible to the checkout success page.
    status: SessionState
    message: str
    instance_id: str | None = None
    instance_url: str | None = None
    email: str | None = None
    plan: str | None = None
    platform: Platform | None = None
    auto_setup: bool | None = None


class ExportJob(BaseModel):
    id: str
    instance_id: str
    status: ExportStatus = "pending"
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    file_path: str | None = None
    file_size: int | None = None
    token: str | None = None
    expires_at: datetime | None = None
    error: str | None = None


class InstanceDailyStats(BaseModel):
    storage_bytes: int = 0
    files: int = 0


class DailyStats(BaseModel):
    date: str
    instances: dict[str, InstanceDailyStats] = Field(default_factory=dict)


class AlertSettings(BaseModel):
    email_alerts: bool = True
    storage_thresholds: list[int] = Field(default_factory=lambda: [80, 90, 100])
    inactivity_days: int = 14
    churn_risk_days: int = 30


class AlertRecord(BaseModel):
    type: AlertType
    sent_at: datetime
    message: str


class AlertHistory(BaseModel):
    instance_id: str
    alerts: list[AlertRecord] = Field(default_factory=list)
    settings: AlertSettings = Field(default_factory=AlertSettings)


class HealthStatus(BaseModel):
    instance_id: str
    url: str
    healthy: bool
    status_code: int | None = None
    response_time_ms: float | None = None
    checked_at: datetime
    error: str | None = None
    ssl_valid: bool | None = None
    ssl_expires_at: datetime | None = None
    ssl_days_remaining: int | None = None
    consecutive_failures: int = 0
    last_healthy_at: datetime | None = None


class HealthState(BaseModel):
    statuses: dict[str, HealthStatus] = Field(default_factory=dict)
    last_full_check: datetime | None = None


class NotificationsSent(BaseModel):
    scheduled: bool = False
    reminder: bool = False
    started: bool = False
    completed: bool = False


class Maintenance(BaseModel):
    id: str
    title: str
    description: str = ""
    type: MaintenanceType = "update"
    scheduled_start: datetime
    scheduled_end: datetime
    affected_instances: list[str] | Literal["all"] = "all"
    status: MaintenanceStatus = "scheduled"
    notifications_sent: NotificationsSent = Field(default_factory=NotificationsSent)
    created_at: datetime
    created_by: str = "admin"
    actual_start: datetime | None = None
    actual_end: datetime | None = None
