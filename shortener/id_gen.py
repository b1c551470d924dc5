"""Short identifier generation and target URL validation."""

from typing import Any
from urllib.parse import SplitResult, quote, urlsplit, urlunsplit

import validators
from nanoid import generate

from shortener.config import get_settings

__all__ = ["ALPHABET", "ALLOWED_SCHEMES", "generate_short_id", "is_valid_url"]

settings = get_settings()

# 62 symbols; 62**7 is roughly 3.5e12 identifiers at the default length.
ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
ALLOWED_SCHEMES = frozenset({"http", "https"})

# Already-encoded octets (%XX) and RFC 3986 sub-delimiters pass through untouched.
_PATH_SAFE = "/!$&'()*+,;=:@%"
_QUERY_SAFE = _PATH_SAFE + "?"
_FRAGMENT_SAFE = _QUERY_SAFE + "#"


def generate_short_id(length: int = settings.SHORT_ID_LENGTH) -> str:
    """Return a random identifier drawn uniformly from ALPHABET.

    Uniqueness is only probabilistic. Callers must rely on the store's unique
    constraint and retry on collision.
    """
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


def is_valid_url(value: Any) -> bool:
    """Accept any absolute http(s) URL a browser would open.

    Hosts may be single-label (``localhost``, ``intranet``) or carry underscores,
    and unencoded characters such as spaces in the path are encoded before the
    structural check, the same way a browser encodes them on navigation.
    """
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parts = urlsplit(value.strip())
        parts.port
    except ValueError:
        return False
    if parts.scheme.lower() not in ALLOWED_SCHEMES or not parts.hostname:
        return False
    return bool(validators.url(_percent_encode(parts), simple_host=True, strict_query=False, rfc_2782=True))


def _percent_encode(parts: SplitResult) -> str:
    return urlunsplit(
        (
            parts.scheme.lower(),
            parts.netloc,
            quote(parts.path, safe=_PATH_SAFE),
            quote(parts.query, safe=_QUERY_SAFE),
            quote(parts.fragment, safe=_FRAGMENT_SAFE),
        )
    )
