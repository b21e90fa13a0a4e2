from __future__ import annotations

from typing import Protocol

from sphoto.domain.models import SessionStatus


class CheckoutSessionStore(Protocol):
    def get(self, session_id: str) -> SessionStatus | None:
        ...

    def set(self, session_id: str, status: SessionStatus) -> None:
        ...

    def clear(self) -> None:
        ...


class InMemorySessionStore:
    # Progress is ephemeral; a restart falls back to the billing provider lookup.
    def __init__(self, max_entries: int = 5000) -> None:
        self._entries: dict[str, SessionStatus] = {}
        self._max_entries = max_entries

    def get(self, session_id: str) -> SessionStatus | None:
        return self._entries.get(session_id)

    def set(self, session_id: str, status: SessionStatus) -> None:
        self._entries.pop(session_id, None)
        self._entries[session_id] = status
        while len(self._entries) > self._max_entries:
            self._entries.pop(next(iter(self._entries)))

    def clear(self) -> None:
        self._entries.clear()


_store: CheckoutSessionStore = InMemorySessionStore()


def get_session_store() -> CheckoutSessionStore:
    return _store


def set_session_store(store: CheckoutSessionStore) -> None:
    global _store
    _store = store


def reset_session_store() -> None:
    set_session_store(InMemorySessionStore())
