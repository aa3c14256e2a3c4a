from __future__ import annotations

from typing import Mapping, Optional

AUTHORIZATION_HEADER = "Authorization"
BEARER_PREFIX = "Bearer "
# Used only by the Polka webhook; never accepted where a bearer token is expected
API_KEY_PREFIX = "ApiKey "


class HeaderError(Exception):
    """The Authorization header could not yield a credential."""


class MissingHeader(HeaderError):
    pass


class SchemeMismatch(HeaderError):
    pass


class EmptyToken(HeaderError):
    pass


def _header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    # Plain dicts are case-sensitive; Starlette Headers already are not
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def extract_token(headers: Mapping[str, str], prefix: str) -> str:
    """Return the credential that follows ``prefix`` in the Authorization header.

    The prefix match is exact and case-sensitive, so ``"Bearer "`` and
    ``"ApiKey "`` never accept each other's headers.

    Raises:
        MissingHeader: no Authorization header, or an empty one
        SchemeMismatch: the value does not start with ``prefix``
        EmptyToken: nothing but whitespace follows the prefix
    """
    auth = _header_value(headers, AUTHORIZATION_HEADER)
    if not auth:
        raise MissingHeader("no authorization header")
    if not auth.startswith(prefix):
        raise SchemeMismatch("invalid authorization header")
    token = auth[len(prefix):].strip()
    if not token:
        raise EmptyToken("authorization token is empty")
    return token
