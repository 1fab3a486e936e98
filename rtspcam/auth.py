"""Authentication helpers for Basic and Digest (MD5, no qop)."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, replace
from typing import Optional

BASIC = "Basic"
DIGEST = "Digest"

@dataclass(frozen=True)
class AuthChallenge:
    """The most recent WWW-Authenticate challenge seen on a session."""
    scheme: Optional[str] = None
    realm: Optional[str] = None
    nonce: Optional[str] = None

    def authorization(self, username: Optional[str], password: Optional[str],
                      method: str, uri: str) -> Optional[str]:
        return build_authorization(self.scheme, username, password, self.realm,
                                   self.nonce, method, uri)

def parse_www_authenticate(header_value: str, previous: Optional[AuthChallenge] = None) -> AuthChallenge:
    """Parse a WWW-Authenticate value into an AuthChallenge.

    The value is split on commas and spaces. ``basic``/``digest`` select the
    scheme, ``realm=``/``nonce=`` tokens set the matching field. Fields not
    present in the header keep their value from *previous*.
    """
    challenge = previous or AuthChallenge()
    for item in header_value.replace(",", " ").split(" "):
        lowered = item.lower()
        if lowered == "basic":
            challenge = replace(challenge, scheme=BASIC)
        elif lowered == "digest":
            challenge = replace(challenge, scheme=DIGEST)
        else:
            parts = item.split("=", 1)
            if len(parts) < 2:
                continue
            key = parts[0].strip()
            value = parts[1].strip(' "')
            if key == "realm":
                challenge = replace(challenge, realm=value)
            elif key == "nonce":
                challenge = replace(challenge, nonce=value)
    return challenge

def basic_auth_header(user: str, password: str) -> str:
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return f"Basic {token}"

def _md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()

def digest_auth_header(uri: str, method: str, realm: str, nonce: str, user: str, password: str) -> str:
    """Compute a Digest Authorization header (RFC 2069 style, MD5, no qop)."""
    ha1 = _md5(f"{user}:{realm}:{password}")
    ha2 = _md5(f"{method}:{uri}")
    response = _md5(f"{ha1}:{nonce}:{ha2}")
    return (f'Digest username="{user}", realm="{realm}", nonce="{nonce}", uri="{uri}", '
            f'response="{response}"')

def build_authorization(scheme: Optional[str], username: Optional[str], password: Optional[str],
                        realm: Optional[str], nonce: Optional[str], method: str, uri: str) -> Optional[str]:
    """Return an Authorization header value, or None when one can't be built.

    Missing username, password or realm (or nonce, for Digest) yields None
    and the caller sends the request unauthenticated.
    """
    if not username or not password or not realm:
        return None
    if scheme == BASIC:
        return basic_auth_header(username, password)
    if scheme == DIGEST:
        if not nonce:
            return None
        return digest_auth_header(uri, method, realm, nonce, username, password)
    return None
