from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Mapping

from fastapi import Request

from .config import parse_env_list

logger = logging.getLogger(__name__)

ANONYMOUS_SCOPE = "anonymous"


@dataclass(frozen=True)
class Identity:
    scope_id: str
    authenticated: bool = False


ANONYMOUS = Identity(scope_id=ANONYMOUS_SCOPE)


def parse_inbound_keys(raw: str) -> dict[str, str]:
    """Parse ``scope:key`` pairs; a bare key maps to the anonymous scope."""
    keys: dict[str, str] = {}
    for item in parse_env_list(raw):
        scope, sep, key = item.partition(":")
        if not sep:
            scope, key = ANONYMOUS_SCOPE, item
        scope = scope.strip()
        key = key.strip()
        if scope and key:
            keys[key] = scope
    return keys


class IdentityResolver:
    def __init__(self, inbound_keys: Mapping[str, str], header: str = "x-api-key") -> None:
        self._keys = dict(inbound_keys)
        self.header = header

    @property
    def enabled(self) -> bool:
        return bool(self._keys)

    def _presented_key(self, req: Request) -> str | None:
        candidate = req.headers.get(self.header)
        if candidate is None:
            auth_header = req.headers.get("authorization")
            if auth_header and auth_header.startswith("Bearer "):
                candidate = auth_header[7:]
        return candidate.strip() if candidate else None

    def current_identity(self, req: Request) -> Identity:
        if not self._keys:
            return ANONYMOUS
        candidate = self._presented_key(req)
        if candidate:
            for key, scope in self._keys.items():
                if hmac.compare_digest(candidate.encode("utf-8"), key.encode("utf-8")):
                    return Identity(scope_id=scope, authenticated=True)
            logger.warning("unknown inbound api key; using anonymous scope")
        return ANONYMOUS
