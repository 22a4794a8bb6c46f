# =============================================================================
#  Copycord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class OutcomeKind(str, Enum):
    DELIVERED = "delivered"
    RATE_LIMITED = "rate_limited"
    RECOVERABLE = "recoverable"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class Outcome:
    """Result of exactly one delivery attempt."""

    kind: OutcomeKind
    retry_after: Optional[float] = None
    reason: str = ""
    status: Optional[int] = None

    @classmethod
    def delivered(cls, status: Optional[int] = None) -> "Outcome":
        return cls(OutcomeKind.DELIVERED, status=status)

    @classmethod
    def rate_limited(
        cls, retry_after: Optional[float], status: Optional[int] = 429
    ) -> "Outcome":
        return cls(
            OutcomeKind.RATE_LIMITED,
            retry_after=retry_after,
            reason="rate limited",
            status=status,
        )

    @classmethod
    def recoverable(cls, reason: str, status: Optional[int] = None) -> "Outcome":
        return cls(OutcomeKind.RECOVERABLE, reason=reason, status=status)

    @classmethod
    def permanent(cls, reason: str, status: Optional[int] = None) -> "Outcome":
        return cls(OutcomeKind.PERMANENT, reason=reason, status=status)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.DELIVERED

    @property
    def is_failure(self) -> bool:
        return self.kind in (OutcomeKind.RATE_LIMITED, OutcomeKind.RECOVERABLE)


PERMANENT_STATUSES = frozenset({401, 403, 404})


def classify_status(
    status: int, *, retry_after: Optional[float] = None, body: str = ""
) -> Outcome:
    """
    2xx -> delivered, 429 -> rate limited, 401/403/404 -> permanent,
    anything else (400 and 5xx included) -> recoverable.
    """
    if 200 <= status < 300:
        return Outcome.delivered(status)
    if status == 429:
        return Outcome.rate_limited(retry_after, status)
    if status in PERMANENT_STATUSES:
        reason = "endpoint not found" if status == 404 else "unauthorized"
        return Outcome.permanent(reason, status)
    if status == 400:
        return Outcome.recoverable(f"malformed payload: {(body or '')[:300]}", status)
    return Outcome.recoverable(f"HTTP {status}", status)


def _safe_json_loads(text: str) -> Any:
    try:
        return json.loads(text)
    except Exception:
        return None


def extract_retry_after_from_body(text: str) -> float | None:
    """Discord: {"retry_after": 1.23, ...}"""
    data = _safe_json_loads(text)
    if not isinstance(data, dict):
        return None

    ra = data.get("retry_after")
    if isinstance(ra, (int, float)) and ra > 0:
        return float(ra)
    return None


def extract_retry_after_from_headers(headers: Optional[Mapping[str, str]]) -> float | None:
    """
    Discord provides:
    - Retry-After (seconds)
    - X-RateLimit-Reset-After (seconds)
    """
    if not headers:
        return None

    for key in ("Retry-After", "X-RateLimit-Reset-After"):
        raw = headers.get(key)
        if not raw:
            continue
        try:
            v = float(raw)
        except (TypeError, ValueError):
            continue
        if v > 0:
            return v
    return None
