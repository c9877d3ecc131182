"""Form-token reuse rules.

A form token is tied to the shop credentials that issued it. Each payment
stores a context (mode, credential fingerprint, generation and expiry time)
in its metadata; a token is only handed out again when that context still
matches the active configuration.
"""

import datetime as dt
import hashlib
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ValidationError

from lyra_shared.models import Payment
from lyra_shared.models.enums import UNUSABLE_PAYMENT_STATES

FORM_TOKEN_CONTEXT_KEY = "lyra_form_token"

# Lyra form tokens are valid for 15 minutes
FORM_TOKEN_TTL = dt.timedelta(minutes=15)

# Only payments created this recently are considered for reuse
REUSE_WINDOW = dt.timedelta(minutes=5)


class FormTokenContext(BaseModel):
    """Credentials context a form token was issued under."""

    mode: str
    fingerprint: str
    generated_at: dt.datetime | None = None
    expires_at: dt.datetime | None = None


def compute_fingerprint(
    mode: str,
    api_base_url: str,
    script_base_url: str,
    public_key: str,
    api_user: str,
) -> str:
    """Stable SHA-256 fingerprint of the credentials issuing a form token."""
    material = "\n".join([mode, api_base_url, script_base_url, public_key, api_user])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def extract_context(metadata: Any) -> FormTokenContext | None:
    """Read the form-token context from payment metadata.

    Returns None for non-dict metadata or a missing/invalid context.
    """
    if not isinstance(metadata, dict):
        return None
    raw = metadata.get(FORM_TOKEN_CONTEXT_KEY)
    if not isinstance(raw, dict):
        return None
    try:
        return FormTokenContext.model_validate(raw)
    except ValidationError:
        return None


def with_updated_context(metadata: Any, context: FormTokenContext) -> dict[str, Any]:
    """Return a copy of metadata carrying the given context."""
    updated = dict(metadata) if isinstance(metadata, dict) else {}
    updated[FORM_TOKEN_CONTEXT_KEY] = context.model_dump(mode="json", exclude_none=True)
    return updated


def is_reusable(
    form_token: str | None,
    expires_at: dt.datetime | None,
    now: dt.datetime,
    expected_context: FormTokenContext,
    metadata: Any,
) -> bool:
    """Check whether a stored form token may be handed out again.

    Requires a token that has not expired and whose stored context matches
    the expected mode and fingerprint.
    """
    if not form_token or expires_at is None or expires_at <= now:
        return False
    context = extract_context(metadata)
    if context is None:
        return False
    return (
        context.mode == expected_context.mode
        and context.fingerprint == expected_context.fingerprint
    )


def find_latest_reusable_payment(
    payments: Iterable[Payment], now: dt.datetime
) -> Payment | None:
    """Newest recent payment that still carries a usable public form config."""
    candidates = [
        p
        for p in payments
        if p.state not in UNUSABLE_PAYMENT_STATES
        and now - p.created_at < REUSE_WINDOW
        and p.public_config is not None
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.created_at)
