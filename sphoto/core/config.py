from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


# Subdomains that would collide with platform hosts or look official.
RESERVED_SUBDOMAINS = frozenset(
    {"www", "api", "admin", "stats", "mail", "smtp", "ftp", "ssh", "test", "dev", "staging", "app"}
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "sphoto-automation"
    log_level: str = "INFO"

    # Base domain; tenants are served at <id>.<domain>.
    domain: str = "sphoto.arturf.ch"
    # Root for instances, stats, health, maintenance, exports and shared users.
    data_dir: str = "/data"
    # Optional large volume for tenant uploads; empty keeps uploads inside the instance dir.
    external_storage_path: str = ""
    # dedicated = one container set per customer, shared = accounts on pooled containers.
    deployment_mode: str = "dedicated"

    # Billing provider selection; fake keeps tests and local runs offline.
    billing_provider: str = "stripe"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_price_basic: str = "price_basic"
    stripe_price_pro: str = "price_pro"
    plan_basic_storage_gb: int = 200
    plan_pro_storage_gb: int = 1000

    # Transactional email delivery.
    email_provider: str = "resend"
    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com/emails"
    email_from: str = "SPhoto <noreply@arturf.ch>"
    support_email: str = "support@arturf.ch"

    # Admin surface: empty key rejects every admin request.
    admin_api_key: str = ""
    admin_email: str = "admin@arturf.ch"

    # Container orchestration.
    container_engine: str = "docker"
    immich_version: str = "release"
    nextcloud_version: str = "stable"
    proxy_network: str = "sphoto-net"
    ml_url: str = "http://sphoto-ml:3003"
    compose_timeout_s: int = 300

    # Readiness polling after compose up.
    ready_poll_interval_s: float = 2.0
    immich_ready_attempts: int = 30
    nextcloud_ready_attempts: int = 45

    # Outbound HTTP timeouts.
    http_timeout_s: float = 10.0
    liveness_timeout_s: float = 5.0
    health_timeout_s: float = 15.0
    ssl_timeout_s: float = 5.0

    # Alerting thresholds.
    alert_cooldown_hours: int = 24
    ssl_critical_days: int = 7
    ssl_warning_days: int = 30

    # Retention windows.
    stats_retention_days: int = 90
    export_expiry_hours: int = 24
    export_cooldown_days: int = 30
    deletion_grace_days: int = 14
    portal_token_ttl_hours: int = 24

    # Shared-tier containers.
    shared_free_url: str = "https://free.sphoto.arturf.ch"
    shared_free_internal_url: str = "http://sphoto-free-server:2283"
    shared_free_api_key: str = ""
    shared_paid_url: str = "https://paid.sphoto.arturf.ch"
    shared_paid_internal_url: str = "http://sphoto-paid-server:2283"
    shared_paid_api_key: str = ""
    shared_free_has_ml: bool = False
    shared_paid_has_ml: bool = True
    free_tier_quota_gb: int = 5
    shared_paid_default_quota_gb: int = 200

    # Background scheduler cadence.
    scheduler_enabled: bool = False
    alert_check_interval_s: int = 3600
    health_check_interval_s: int = 300
    maintenance_check_interval_s: int = 600
    export_cleanup_interval_s: int = 3600
    deletion_check_interval_s: int = 3600
    downgrade_reconcile_interval_s: int = 3600

    cors_allow_origins: str = "*"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def instances_dir(self) -> Path:
        return self.data_path / "instances"

    @property
    def stats_dir(self) -> Path:
        return self.data_path / "stats"

    @property
    def health_dir(self) -> Path:
        return self.data_path / "health"

    @property
    def maintenance_dir(self) -> Path:
        return self.data_path / "maintenance"

    @property
    def exports_dir(self) -> Path:
        return self.data_path / "exports"

    @property
    def shared_users_dir(self) -> Path:
        return self.data_path / "shared_users"

    @property
    def billing_dir(self) -> Path:
        return self.data_path / "billing"


@lru_cache
def get_settings() -> Settings:
    return Settings()


@dataclass(frozen=True)
class Plan:
    # Catalog entry keyed by billing price id; ordered by storage.
    key: str
    name: str
    storage_gb: int
    price_id: str


def plan_catalog(settings: Settings | None = None) -> list[Plan]:
    # Return plans ordered from the lowest to the highest tier.
    settings = settings or get_settings()
    plans = [
        Plan(key="basic", name="Basic", storage_gb=settings.plan_basic_storage_gb, price_id=settings.stripe_price_basic),
        Plan(key="pro", name="Pro", storage_gb=settings.plan_pro_storage_gb, price_id=settings.stripe_price_pro),
    ]
    return sorted(plans, key=lambda plan: plan.storage_gb)


def plan_for_price(price_id: str | None) -> Plan | None:
    if not price_id:
        return None
    for plan in plan_catalog():
        if plan.price_id == price_id:
            return plan
    return None


def plan_for_key(key: str | None) -> Plan | None:
    if not key:
        return None
    for plan in plan_catalog():
        if plan.key == key.lower():
            return plan
    return None


def plan_for_name(name: str | None) -> Plan | None:
    if not name:
        return None
    for plan in plan_catalog():
        if plan.name.lower() == name.lower():
            return plan
    return None
