from __future__ import annotations

import pytest

from sphoto.persistence.repos.instances import instance_dir
from sphoto.services.subdomain import (
    MSG_INVALID,
    MSG_RESERVED,
    MSG_TAKEN,
    check_subdomain,
    is_valid_subdomain,
)
from sphoto.tests.utils.factories import make_instance


@pytest.mark.parametrize("name", ["ab", "-anna", "anna-", "an--na", "a" * 21, "anna_b", "anna.b"])
def test_invalid_subdomains_are_rejected(name: str) -> None:
    result = check_subdomain(name)
    assert result.available is False
    assert result.error == MSG_INVALID


def test_subdomain_is_lowercased_before_checks() -> None:
    result = check_subdomain("  Anna-Photos ")
    assert result.subdomain == "anna-photos"
    assert result.available is True
    assert result.error is None


def test_reserved_subdomain_is_not_available() -> None:
    result = check_subdomain("admin")
    assert result.available is False
    assert result.error == MSG_RESERVED


def test_existing_instance_blocks_subdomain() -> None:
    make_instance("familie")
    result = check_subdomain("familie")
    assert result.available is False
    assert result.error == MSG_TAKEN


def test_boundary_lengths_are_accepted() -> None:
    assert check_subdomain("abc").available is True
    assert check_subdomain("a" * 20).available is True


def test_reserved_check_ignores_case() -> None:
    result = check_subdomain("ADMIN")
    assert result.subdomain == "admin"
    assert result.available is False
    assert result.error == MSG_RESERVED


def test_bare_directory_without_metadata_blocks_subdomain() -> None:
    instance_dir("ghost").mkdir(parents=True)
    result = check_subdomain("ghost")
    assert result.available is False
    assert result.error == MSG_TAKEN


@pytest.mark.parametrize("name", ["anna\n", "anna\nbert", " anna", "Anna"])
def test_format_check_matches_whole_name(name: str) -> None:
    assert is_valid_subdomain(name) is False
