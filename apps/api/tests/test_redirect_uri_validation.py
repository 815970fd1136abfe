from __future__ import annotations

import pytest

from guildauth.core.errors import (
    InvalidRedirectUriError,
    InvalidRedirectUriFormatError,
    InvalidRedirectUriProtocolError,
)
from guildauth.services.auth.redirect_uris import RedirectUriValidator

ALLOWED = ["http://localhost:3000", "https://app.example.com/"]
FALLBACK = "http://localhost:3000/"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("https://App.Example.com/", "https://app.example.com"),
        ("https://app.example.com:443", "https://app.example.com"),
        ("https://app.example.com:8443/dashboard/", "https://app.example.com:8443/dashboard"),
        ("http://localhost:3000/", "http://localhost:3000"),
        ("https://[::1]:8443/cb", "https://[::1]:8443/cb"),
        ("https://app.example.com/cb/?next=/home/&x=1#top/", "https://app.example.com/cb?next=/home/&x=1#top/"),
        ("https://app.example.com/?q=A%20B", "https://app.example.com?q=A%20B"),
        ("https://app.example.com#/settings", "https://app.example.com#/settings"),
        ("https://app.example.com//", "https://app.example.com"),
        ("https://app.example.com/x//", "https://app.example.com/x"),
    ],
)
def test_normalize(raw: str, expected: str) -> None:
    assert RedirectUriValidator().normalize(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "https://EXAMPLE.com/path/",
        "https://example.com:443/",
        "https://example.com/a///",
        "http://localhost:3000/cb/?state=1#frag",
        "https://example.com//?q=1",
    ],
)
def test_normalize_is_idempotent(raw: str) -> None:
    validator = RedirectUriValidator()
    once = validator.normalize(raw)
    assert validator.normalize(once) == once


def test_case_and_trailing_slash_do_not_matter() -> None:
    validator = RedirectUriValidator()
    assert validator.normalize("https://EXAMPLE.com/path/") == validator.normalize("https://example.com/path")


def test_whitelisted_uri_is_returned_normalized() -> None:
    validator = RedirectUriValidator()
    assert validator.validate("https://app.example.com", ALLOWED, FALLBACK) == "https://app.example.com"
    assert validator.validate("http://localhost:3000/", ALLOWED, FALLBACK) == "http://localhost:3000"


def test_missing_candidate_uses_fallback() -> None:
    validator = RedirectUriValidator()
    assert validator.validate(None, ALLOWED, FALLBACK) == "http://localhost:3000"
    assert validator.validate("", ALLOWED, FALLBACK) == "http://localhost:3000"


@pytest.mark.parametrize(
    "candidate",
    [
        "https://evil.test",
        "https://app.example.com.evil.test",
        "https://app.example.com/other",
        "https://app.example.com:8443",
    ],
)
def test_unlisted_uri_is_rejected(candidate: str) -> None:
    with pytest.raises(InvalidRedirectUriError) as exc:
        RedirectUriValidator().validate(candidate, ALLOWED, FALLBACK)
    assert exc.value.code == "invalid_redirect_uri"


def test_plain_http_is_only_allowed_for_localhost() -> None:
    validator = RedirectUriValidator()
    with pytest.raises(InvalidRedirectUriProtocolError):
        validator.validate("http://app.example.com", ["http://app.example.com"], FALLBACK)
    with pytest.raises(InvalidRedirectUriProtocolError):
        validator.normalize("javascript://evil.test/%0aalert(1)")


def test_malformed_uri_is_rejected() -> None:
    validator = RedirectUriValidator()
    with pytest.raises(InvalidRedirectUriFormatError):
        validator.normalize("not a url")
    with pytest.raises(InvalidRedirectUriFormatError):
        validator.normalize("https://app.example.com:notaport")


def test_broken_whitelist_entry_does_not_block_valid_ones() -> None:
    validator = RedirectUriValidator()
    allowed = ["not a url", "http://insecure.example.com", "https://app.example.com"]
    assert validator.validate("https://app.example.com/", allowed, FALLBACK) == "https://app.example.com"
    assert validator.is_allowed("https://app.example.com", allowed)
    assert not validator.is_allowed("http://insecure.example.com", allowed)
