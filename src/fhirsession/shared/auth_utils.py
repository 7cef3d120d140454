"""Helpers for the SMART on FHIR OAuth2 flows: PKCE (RFC 7636), redirect parsing, token expiry."""

import base64
import hashlib
import secrets
import time
from typing import NamedTuple
from urllib.parse import parse_qsl, urlsplit


class PKCEPair(NamedTuple):
    verifier: str
    challenge: str


def s256_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_pair(nbytes: int = 64) -> PKCEPair:
    """Generate a code verifier and its S256 challenge.

    `secrets.token_urlsafe` only emits unreserved characters, so its output is a
    valid verifier as long as it is 43 to 128 characters long.

    Raises:
        ValueError: `nbytes` yields a verifier of invalid length
    """
    verifier = secrets.token_urlsafe(nbytes)
    if not 43 <= len(verifier) <= 128:
        raise ValueError(f"PKCE verifier must be 43 to 128 characters, {nbytes} bytes give {len(verifier)}")
    return PKCEPair(verifier, s256_challenge(verifier))


def redirect_parameters(url: str) -> dict[str, str]:
    """Parameters of an authorization redirect, from its query and its fragment.

    The implicit grant returns its token in the fragment; fragment values win.
    """
    parts = urlsplit(url)
    params = dict(parse_qsl(parts.query))
    params.update(parse_qsl(parts.fragment))
    return params


def token_expiry(expires_in: int | str | None) -> float | None:
    """Unix timestamp at which a token with this ``expires_in`` expires; None if it does not say."""
    if expires_in is None:
        return None
    return time.time() + int(expires_in)
