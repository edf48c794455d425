"""Pure helpers that read the expiry claim of a bearer token.

The client never holds the signing key, so signatures are **not** verified
here; the server remains the authority.  These helpers only answer "should
this token still be presented?" and they fail closed: anything that cannot be
decoded, or that lacks a numeric ``exp`` claim, is reported as expired with
zero time remaining.

A safety margin (default 5 minutes) is subtracted from the real expiry so a
token is renewed before the server would start rejecting it.

Decoding never raises.  :func:`decode_claims` returns a :class:`DecodeResult`
carrying either the claims or an error tag, and callers must look at it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Final, Mapping

import jwt

from sps_admin.session.clock import Clock, default_clock

SAFETY_MARGIN_SECONDS: Final[float] = 5 * 60
NEAR_EXPIRY_SECONDS: Final[float] = 10 * 60

_DECODE_OPTIONS: Final[dict[str, bool]] = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


@dataclass(frozen=True, slots=True)
class DecodeResult:
    """Outcome of decoding a token's claims segment."""

    claims: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def expires_at(self) -> float | None:
        """``exp`` claim in epoch seconds, or ``None`` when unusable."""
        if not self.ok:
            return None
        exp = self.claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return None
        try:
            value = float(exp)
        except OverflowError:
            return None
        # inf and NaN would never compare as expired
        if not math.isfinite(value):
            return None
        return value


def decode_claims(token: str | None) -> DecodeResult:
    """Decode *token* without verifying it."""
    if not token or not isinstance(token, str):
        return DecodeResult(error="missing")
    try:
        claims = jwt.decode(token, options=_DECODE_OPTIONS, algorithms=None)
    except jwt.PyJWTError as exc:
        return DecodeResult(error=f"malformed: {type(exc).__name__}")
    except (ValueError, TypeError):
        return DecodeResult(error="malformed")
    if not isinstance(claims, Mapping):
        return DecodeResult(error="malformed")
    if "exp" not in claims:
        return DecodeResult(claims=claims, error="no_exp")
    result = DecodeResult(claims=claims)
    if result.expires_at is None:
        return DecodeResult(claims=claims, error="invalid_exp")
    return result


def _deadline_ms(token: str | None, safety_margin: float) -> float | None:
    expires_at = decode_claims(token).expires_at
    if expires_at is None:
        return None
    deadline = expires_at * 1000 - safety_margin * 1000
    if not math.isfinite(deadline):
        return None
    return deadline


def is_expired(
    token: str | None,
    *,
    clock: Clock = default_clock,
    safety_margin: float = SAFETY_MARGIN_SECONDS,
) -> bool:
    """Return *True* when *token* must not be presented any more."""
    deadline = _deadline_ms(token, safety_margin)
    if deadline is None:
        return True
    return clock() * 1000 >= deadline


def time_remaining(
    token: str | None,
    *,
    clock: Clock = default_clock,
    safety_margin: float = SAFETY_MARGIN_SECONDS,
) -> int:
    """Milliseconds until *token* reaches its safety-margin expiry (never negative)."""
    deadline = _deadline_ms(token, safety_margin)
    if deadline is None:
        return 0
    return max(0, int(deadline - clock() * 1000))


def is_near_expiry(
    token: str | None,
    *,
    clock: Clock = default_clock,
    threshold: float = NEAR_EXPIRY_SECONDS,
    safety_margin: float = SAFETY_MARGIN_SECONDS,
) -> bool:
    """True once *token* is within *threshold* seconds of its safety-margin expiry."""
    remaining = time_remaining(token, clock=clock, safety_margin=safety_margin)
    return remaining <= threshold * 1000


def format_time_remaining(remaining_ms: int | None) -> str:
    """Render a countdown such as ``"4m 12s"``; ``"Expired"`` when nothing is left."""
    if not remaining_ms or remaining_ms <= 0:
        return "Expired"
    minutes, rest = divmod(int(remaining_ms), 60_000)
    seconds = rest // 1000
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"
