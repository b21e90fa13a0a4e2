from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class EmailMessage:
    to: tuple[str, ...]
    subject: str
    html: str


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None:
        ...
