from __future__ import annotations

import logging
from datetime import datetime
from html import escape
from typing import Iterable

from sphoto.core.config import get_settings
from sphoto.core.errors import ConfigError, EmailDeliveryError
from sphoto.domain.models import Maintenance
from sphoto.providers.email.base import EmailMessage
from sphoto.providers.email.factory import get_email_sender
from sphoto.providers.platforms.base import instance_url
from sphoto.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_MAINTENANCE_ICONS = {"update": "🔄", "backup": "💾", "migration": "🚚", "emergency": "🚨"}
_MAINTENANCE_LABELS = {
    "update": "Software-Update",
    "backup": "Backup",
    "migration": "Migration",
    "emergency": "Notfall-Wartung",
}


def _layout(body: str) -> str:
    support = escape(get_settings().support_email)
    return (
        '<div style="font-family: -apple-system, BlinkMacSystemFont, sans-serif; '
        'max-width: 500px; margin: 0 auto; padding: 20px;">'
        '<h1 style="color: #111;"><span style="color: #dc2626;">S</span>Photo</h1>'
        f"{body}"
        f'<p style="color: #666; font-size: 12px; margin-top: 30px;">Bei Fragen: {support}</p>'
        "</div>"
    )


def _format_dt(value: datetime) -> str:
    return value.strftime("%d.%m.%Y %H:%M UTC")


async def send_email(to: str | Iterable[str], subject: str, html: str) -> bool:
    # Delivery failures are logged and reported as False; callers never roll back on them.
    recipients = tuple(item for item in ((to,) if isinstance(to, str) else to) if item)
    if not recipients:
        return False
    try:
        sender = get_email_sender()
        await sender.send(EmailMessage(to=recipients, subject=subject, html=html))
    except (EmailDeliveryError, ConfigError) as exc:
        increment_counter("email_failed")
        logger.warning("email_send_failed subject=%s recipients=%s error=%s", subject, len(recipients), exc)
        return False
    increment_counter("email_sent")
    logger.info("email_sent subject=%s recipients=%s", subject, len(recipients))
    return True


async def send_welcome_email(
    email: str,
    instance_id: str,
    plan_name: str,
    storage_gb: int,
    password: str | None,
    *,
    url: str | None = None,
) -> bool:
    url = url or instance_url(instance_id)
    if password:
        login = (
            '<div style="background: #dcfce7; padding: 20px; border-radius: 8px;">'
            "<p><strong>🔐 Deine Login-Daten:</strong></p>"
            f"<p><strong>E-Mail:</strong> {escape(email)}</p>"
            f"<p><strong>Passwort:</strong> <code>{escape(password)}</code></p>"
            '<p style="font-size: 12px;">Bitte ändere dein Passwort nach dem ersten Login.</p>'
            "</div>"
        )
        step = "<li>Logge dich mit den obigen Daten ein</li>"
    else:
        login = "<p>Öffne die URL und erstelle deinen Admin-Account.</p>"
        step = "<li>Erstelle deinen Account</li>"
    body = (
        "<p>Hallo!</p><p>Deine persönliche Photo-Cloud ist bereit.</p>"
        f"<p><strong>Plan:</strong> {escape(plan_name)} ({storage_gb} GB)</p>"
        f'<p><strong>Deine URL:</strong> <a href="{url}">{url}</a></p>'
        f"{login}"
        f'<h3>Nächste Schritte:</h3><ol><li>Öffne <a href="{url}">{url}</a></li>{step}'
        f"<li>Lade die App (iOS/Android)</li><li>Verbinde mit: <code>{url}</code></li></ol>"
        "<p><strong>Wichtig:</strong> SPhoto ist ein Budget-Service ohne Backup. Erstelle eigene Backups!</p>"
    )
    return await send_email(email, "🎉 Deine SPhoto Cloud ist bereit!", _layout(body))


async def send_payment_failed_email(email: str) -> bool:
    body = (
        "<p>Hallo!</p>"
        "<p>Leider konnte deine letzte Zahlung nicht verarbeitet werden. "
        "Deine Cloud wurde vorübergehend pausiert.</p>"
        "<p>Bitte aktualisiere deine Zahlungsmethode, damit wir sie wieder starten können.</p>"
    )
    return await send_email(email, "⚠️ SPhoto: Zahlung fehlgeschlagen", _layout(body))


async def send_upgrade_email(email: str, instance_id: str, plan_name: str, storage_gb: int) -> bool:
    body = (
        f"<p>Dein Upgrade auf <strong>{escape(plan_name)}</strong> war erfolgreich.</p>"
        f"<p>Dein neuer Speicherplatz: <strong>{storage_gb} GB</strong>, ab sofort verfügbar.</p>"
        f'<p><a href="{instance_url(instance_id)}">Zu deiner Cloud</a></p>'
    )
    return await send_email(email, "🚀 SPhoto: Upgrade erfolgreich!", _layout(body))


async def send_downgrade_email(
    email: str, plan_name: str, storage_gb: int, effective_at: datetime
) -> bool:
    body = (
        f"<p>Dein Wechsel zu <strong>{escape(plan_name)}</strong> ({storage_gb} GB) ist bestätigt.</p>"
        f"<p>Gültig ab: <strong>{_format_dt(effective_at)}</strong></p>"
    )
    return await send_email(email, "📦 SPhoto: Plan-Änderung bestätigt", _layout(body))


async def send_storage_alert_email(
    to: str | Iterable[str], instance_id: str, percentage: int, used_gb: float, limit_gb: int
) -> bool:
    icon = "🔴" if percentage >= 100 else "🟠" if percentage >= 90 else "🟡"
    body = (
        f"<p>Deine Cloud <strong>{escape(instance_id)}</strong> ist zu {percentage}% belegt "
        f"({used_gb} GB von {limit_gb} GB).</p>"
        "<p>Lösche nicht benötigte Dateien oder wechsle auf einen grösseren Plan.</p>"
        f'<p><a href="{instance_url(instance_id)}">Zu deiner Cloud</a></p>'
    )
    return await send_email(to, f"{icon} SPhoto: Speicher {percentage}% belegt", _layout(body))


async def send_inactivity_email(email: str, instance_id: str, days: int) -> bool:
    body = (
        f"<p>Seit {days} Tagen wurden keine neuen Fotos in deine Cloud hochgeladen.</p>"
        "<p>Tipp: Aktiviere das automatische Backup in der App.</p>"
        f'<p><a href="{instance_url(instance_id)}">Zu deiner Cloud</a></p>'
    )
    return await send_email(email, "👋 Wir vermissen dich bei SPhoto!", _layout(body))


async def send_instance_down_email(instance_id: str, error: str | None) -> bool:
    body = (
        f"<p><strong>Instance:</strong> {escape(instance_id)}</p>"
        f"<p><strong>URL:</strong> {instance_url(instance_id)}</p>"
        f"<p><strong>Fehler:</strong> {escape(error or 'unbekannt')}</p>"
    )
    return await send_email(
        get_settings().admin_email, f"🚨 ALERT: Instance {instance_id} is down", _layout(body)
    )


async def send_churn_risk_email(instance_id: str, email: str, days: int) -> bool:
    body = (
        f"<p><strong>Instance:</strong> {escape(instance_id)}</p>"
        f"<p><strong>Kunde:</strong> {escape(email)}</p>"
        f"<p>Keine Uploads seit {days} Tagen.</p>"
    )
    return await send_email(
        get_settings().admin_email,
        f"📉 Churn Risk: {instance_id} ({days} days inactive)",
        _layout(body),
    )


async def send_health_transition_email(
    instance_id: str, healthy: bool, error: str | None, consecutive_failures: int
) -> bool:
    state = "recovering" if healthy else "down"
    body = (
        f"<p><strong>Instance:</strong> {escape(instance_id)}</p>"
        f"<p><strong>Status:</strong> {state}</p>"
        f"<p><strong>Fehler:</strong> {escape(error or '-')}</p>"
        f"<p><strong>Fehlschläge in Folge:</strong> {consecutive_failures}</p>"
    )
    return await send_email(
        get_settings().admin_email, f"🚨 Health Alert: {instance_id} is {state}", _layout(body)
    )


async def send_ssl_critical_email(instance_id: str, days_remaining: int, expires_at: datetime) -> bool:
    body = (
        f"<p>Das Zertifikat von <strong>{escape(instance_id)}</strong> läuft in "
        f"{days_remaining} Tagen ab ({_format_dt(expires_at)}).</p>"
        "<p>Die automatische Erneuerung ist vermutlich fehlgeschlagen. Bitte Reverse Proxy prüfen.</p>"
    )
    return await send_email(
        get_settings().admin_email,
        f"🔴 CRITICAL: SSL auto-renewal may have failed - {instance_id}",
        _layout(body),
    )


def _maintenance_details(maintenance: Maintenance) -> str:
    return (
        f"<p><strong>{escape(maintenance.title)}</strong> "
        f"({_MAINTENANCE_LABELS.get(maintenance.type, maintenance.type)})</p>"
        f"<p>{escape(maintenance.description)}</p>"
        f"<p><strong>Beginn:</strong> {_format_dt(maintenance.scheduled_start)}<br>"
        f"<strong>Ende:</strong> {_format_dt(maintenance.scheduled_end)}</p>"
    )


async def send_maintenance_scheduled_email(recipients: list[str], maintenance: Maintenance) -> bool:
    icon = _MAINTENANCE_ICONS.get(maintenance.type, "🔧")
    subject = f"{icon} SPhoto: Geplante Wartung am {maintenance.scheduled_start.strftime('%d.%m.%Y')}"
    body = (
        "<p>Wir führen eine geplante Wartung durch. Deine Cloud ist in dieser Zeit "
        "möglicherweise nicht erreichbar.</p>"
        f"{_maintenance_details(maintenance)}"
    )
    return await send_email(recipients, subject, _layout(body))


async def send_maintenance_reminder_email(recipients: list[str], maintenance: Maintenance) -> bool:
    body = f"<p>Die Wartung beginnt in Kürze.</p>{_maintenance_details(maintenance)}"
    return await send_email(recipients, "⏰ SPhoto: Wartung beginnt in 2 Stunden", _layout(body))


async def send_maintenance_started_email(recipients: list[str], maintenance: Maintenance) -> bool:
    body = f"<p>Die Wartung hat begonnen.</p>{_maintenance_details(maintenance)}"
    return await send_email(recipients, "🔧 SPhoto: Wartung gestartet", _layout(body))


async def send_maintenance_completed_email(recipients: list[str], maintenance: Maintenance) -> bool:
    body = (
        "<p>Die Wartung ist abgeschlossen. Deine Cloud ist wieder voll verfügbar.</p>"
        f"{_maintenance_details(maintenance)}"
    )
    return await send_email(recipients, "✅ SPhoto: Wartung abgeschlossen", _layout(body))


async def send_export_ready_email(email: str, download_url: str, expires_at: datetime) -> bool:
    body = (
        "<p>Dein Daten-Export ist bereit.</p>"
        f'<p><a href="{download_url}">Export herunterladen</a></p>'
        f"<p>Der Link ist gültig bis {_format_dt(expires_at)}.</p>"
    )
    return await send_email(email, "📦 SPhoto: Dein Export ist bereit", _layout(body))


async def send_shared_welcome_email(
    email: str, url: str, tier: str, quota_gb: int, password: str
) -> bool:
    return await send_welcome_email(email, tier, tier.capitalize(), quota_gb, password, url=url)


async def send_tier_changed_email(email: str, tier: str, quota_gb: int, password: str | None) -> bool:
    login = (
        f"<p>Dein Konto wurde verschoben. Neues Passwort: <code>{escape(password)}</code></p>"
        if password
        else ""
    )
    body = f"<p>Dein Tarif ist jetzt <strong>{escape(tier)}</strong> ({quota_gb} GB).</p>{login}"
    return await send_email(email, "📦 SPhoto: Plan-Änderung bestätigt", _layout(body))


async def send_deletion_scheduled_email(email: str, scheduled_for: datetime) -> bool:
    body = (
        f"<p>Dein Konto wird am <strong>{_format_dt(scheduled_for)}</strong> gelöscht.</p>"
        "<p>Bis dahin kannst du die Löschung im Kundenportal widerrufen.</p>"
    )
    return await send_email(email, "🗑️ SPhoto: Kontolöschung geplant", _layout(body))


async def send_account_deleted_email(email: str) -> bool:
    body = "<p>Dein Konto und alle Daten wurden gelöscht.</p>"
    return await send_email(email, "👋 SPhoto: Konto gelöscht", _layout(body))


async def send_test_alert_email(email: str, instance_id: str, alert_type: str) -> bool:
    body = (
        f"<p>Dies ist ein Test-Alert vom Typ <strong>{escape(alert_type)}</strong> "
        f"für {escape(instance_id)}.</p>"
    )
    return await send_email(email, f"🧪 SPhoto Test-Alert: {alert_type}", _layout(body))


async def send_portal_login_email(email: str, login_url: str) -> bool:
    body = (
        "<p>Hier ist dein Login-Link für das Kundenportal:</p>"
        f'<p><a href="{login_url}">Zum Kundenportal</a></p>'
        "<p>Der Link ist 24 Stunden gültig.</p>"
    )
    return await send_email(email, "🔐 SPhoto: Dein Login-Link", _layout(body))
