from __future__ import annotations

from typing import Callable

from sphoto.domain.models import AlertHistory
from sphoto.persistence.repos.instances import instance_dir
from sphoto.persistence.store import locked, read_model, write_model


_MAX_RECORDS = 100


def load_alert_history(instance_id: str) -> AlertHistory:
    history = read_model(instance_dir(instance_id) / "alerts.json", AlertHistory)
    return history or AlertHistory(instance_id=instance_id)


def save_alert_history(history: AlertHistory) -> None:
    history.alerts = history.alerts[-_MAX_RECORDS:]
    write_model(instance_dir(history.instance_id) / "alerts.json", history)


async def update_alert_history(
    instance_id: str, mutate: Callable[[AlertHistory], None]
) -> AlertHistory:
    async with locked(f"alerts:{instance_id}"):
        history = load_alert_history(instance_id)
        mutate(history)
        save_alert_history(history)
        return history
