from __future__ import annotations

import re
from dataclasses import dataclass

from sphoto.core.config import RESERVED_SUBDOMAINS
from sphoto.persistence.repos.instances import instance_exists, load_instance


_SUBDOMAIN_RE = re.compile(r"[a-z0-9][a-z0-9-]{1,18}[a-z0-9]")

MSG_INVALID = "Ungültiges Format. 3-20 Zeichen, nur Kleinbuchstaben, Zahlen und Bindestriche."
MSG_RESERVED = "Diese Subdomain ist reserviert."
MSG_TAKEN = "Diese Subdomain ist bereits vergeben."


@dataclass(frozen=True)
class SubdomainCheck:
    subdomain: str
    available: bool
    error: str | None = None


def is_valid_subdomain(name: str) -> bool:
    return bool(_SUBDOMAIN_RE.fullmatch(name)) and "--" not in name


def is_reserved_subdomain(name: str) -> bool:
    return name in RESERVED_SUBDOMAINS


def is_subdomain_taken(name: str) -> bool:
    return load_instance(name) is not None or instance_exists(name)


def check_subdomain(raw: str) -> SubdomainCheck:
    # Lowercase first, then format, reservation and collision checks in that order.
    name = raw.strip().lower()
    if not is_valid_subdomain(name):
        return SubdomainCheck(subdomain=name, available=False, error=MSG_INVALID)
    if is_reserved_subdomain(name):
        return SubdomainCheck(subdomain=name, available=False, error=MSG_RESERVED)
    if is_subdomain_taken(name):
        return SubdomainCheck(subdomain=name, available=False, error=MSG_TAKEN)
    return SubdomainCheck(subdomain=name, available=True)
