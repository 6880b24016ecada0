"""Inbound webhook authentication for Polar and SePay.

Polar signs deliveries with the Standard Webhooks scheme: three headers
(``webhook-id``, ``webhook-timestamp``, ``webhook-signature``) and an
HMAC-SHA256 over ``{id}.{timestamp}.{raw body}`` keyed with the base64
secret. Signing and comparison are done by the ``standardwebhooks`` package.
SePay sends a static API key in the ``Authorization`` header.

Nothing in this module does I/O.
"""
import base64
import binascii
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Mapping, Optional, Union

from standardwebhooks.webhooks import Webhook
from standardwebhooks.webhooks import WebhookVerificationError as StandardWebhookError

SECRET_PREFIX = "whsec_"
DEFAULT_TOLERANCE_SECONDS = 300


class WebhookVerificationError(Exception):
    """Base class for every authentication failure (mapped to HTTP 403)"""


class MissingHeadersError(WebhookVerificationError):
    pass


class StaleTimestampError(WebhookVerificationError):
    pass


class InvalidSignatureError(WebhookVerificationError):
    pass


class UnauthorizedError(WebhookVerificationError):
    pass


def decode_secret(secret: str) -> bytes:
    """Decode a Standard Webhooks secret to raw key bytes.

    Strips the ``whsec_`` prefix if present. Unpadded base64 is accepted.
    """
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    secret = secret.strip()
    return base64.b64decode(secret + "=" * (-len(secret) % 4), validate=True)


def compute_signature(secret: str, message_id: str, timestamp: str, body: bytes) -> str:
    """Return the base64 ``v1`` signature of ``{message_id}.{timestamp}.{body}``"""
    signed_at = datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    versioned = Webhook(decode_secret(secret)).sign(message_id, signed_at, body.decode())
    return versioned.split(",", 1)[1]


def verify_polar_signature(
    body: Union[bytes, str],
    headers: Mapping[str, str],
    secret: str,
    now: Optional[int] = None,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> None:
    """Verify a Polar (Standard Webhooks) delivery.

    Header presence and the timestamp window are checked here so each failure
    keeps its own error type; the signature itself is checked by
    ``standardwebhooks``, which also enforces its own 5 minute window against
    the wall clock.

    Args:
        body: Raw request body exactly as received. Re-serialized JSON will not verify.
        headers: Request headers; lookups use lowercase names.
        secret: Signing secret, optionally ``whsec_``-prefixed.
        now: Current Unix time, injectable for tests.
        tolerance: Allowed clock difference in seconds, in either direction.

    Raises:
        MissingHeadersError: One of the three signature headers is absent.
        StaleTimestampError: Timestamp unparseable or outside the tolerance window.
        InvalidSignatureError: No ``v1`` signature matches.
    """
    message_id = headers.get("webhook-id")
    timestamp = headers.get("webhook-timestamp")
    signature_header = headers.get("webhook-signature")

    if not message_id or not timestamp or not signature_header:
        raise MissingHeadersError("Missing required webhook headers")

    try:
        sent_at = int(timestamp)
    except ValueError:
        raise StaleTimestampError("Invalid webhook timestamp")

    current = int(time.time()) if now is None else now
    if abs(current - sent_at) > tolerance:
        raise StaleTimestampError("Webhook timestamp outside tolerance")

    if not secret:
        raise InvalidSignatureError("Webhook secret not configured")

    try:
        webhook = Webhook(decode_secret(secret))
    except (binascii.Error, ValueError):
        raise InvalidSignatureError("Webhook secret is not valid base64")

    signed_headers = {
        "webhook-id": message_id,
        "webhook-timestamp": timestamp,
        "webhook-signature": signature_header,
    }
    try:
        webhook.verify(body, signed_headers)
    except json.JSONDecodeError:
        # Signature matched; the body just is not JSON. The normalizer reports that.
        return
    except StandardWebhookError as e:
        raise InvalidSignatureError(f"Invalid webhook signature: {e}")
    except (binascii.Error, ValueError):
        # Malformed signature candidates or a body that is not UTF-8
        raise InvalidSignatureError("Invalid webhook signature")


def verify_sepay_auth(authorization: Optional[str], secret: str) -> None:
    """Verify a SePay ``Authorization: Apikey <key>`` or ``Bearer <key>`` header.

    Raises:
        UnauthorizedError: Header absent, unknown scheme, or key mismatch.
    """
    if not authorization or not secret:
        raise UnauthorizedError("Unauthorized")

    scheme, _, token = authorization.partition(" ")
    if scheme not in ("Apikey", "Bearer") or not token:
        raise UnauthorizedError("Unauthorized")

    if not hmac.compare_digest(token.encode(), secret.encode()):
        raise UnauthorizedError("Unauthorized")
