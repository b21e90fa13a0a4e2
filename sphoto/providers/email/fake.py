from __future__ import annotations

from sphoto.providers.email.base import EmailMessage


class FakeEmailSender:
    def __init__(self) -> None:
        # Collected messages let tests assert on recipients and subjects.
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)

    def subjects(self) -> list[str]:
        return [message.subject for message in self.sent]
