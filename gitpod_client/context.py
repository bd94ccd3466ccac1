"""Referrer prefixes on workspace context URLs."""
from __future__ import annotations

import re
from typing import Any, Dict, Optional

from .config import normalise_host

DEFAULT_REFERRER = "jetbrains-gateway"

_PREFIX = re.compile(r"^(/?referrer:([^/]*)/)")


class ReferrerPrefixParser:
    """Recognise ``referrer:<name>/`` in front of a context URL."""

    def find_prefix(self, context: str) -> Optional[str]:
        match = _PREFIX.match(context)
        return match.group(1) if match else None

    def handle(self, prefix: str, context: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``context`` with ``referrer`` set from ``prefix`` when it names one."""

        match = _PREFIX.match(prefix)
        referrer = match.group(2) if match else None
        if not referrer:
            return context
        return {**context, "referrer": referrer}

    def strip(self, context: str) -> str:
        prefix = self.find_prefix(context)
        return context[len(prefix):] if prefix else context


def new_workspace_url(host: str, context_url: str, *, referrer: Optional[str] = DEFAULT_REFERRER) -> str:
    """Return the dashboard URL that opens a new workspace for ``context_url``."""

    cleaned = (context_url or "").strip()
    if not cleaned:
        raise ValueError("Context URL must not be empty")
    fragment = f"referrer:{referrer}/{cleaned}" if referrer else cleaned
    return f"https://{normalise_host(host)}#{fragment}"


__all__ = ["DEFAULT_REFERRER", "ReferrerPrefixParser", "new_workspace_url"]
