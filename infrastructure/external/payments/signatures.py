"""
Signature and auth primitives shared by the gateway adapters.

All comparisons are constant-time. Nothing here logs or stores secrets.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import Mapping, Optional

FLOW_SIGNATURE_PARAM = "s"


def _hex_hmac(secret: str, payload: bytes, digestmod) -> str:
    return hmac.new(secret.encode("utf-8"), payload, digestmod).hexdigest()


def flow_sign(params: Mapping[str, object], secret: str) -> str:
    """HMAC-SHA256 over `key+value` pairs sorted by key, signature param excluded."""
    to_sign = "".join(
        f"{key}{'' if params[key] is None else params[key]}"
        for key in sorted(params)
        if key != FLOW_SIGNATURE_PARAM
    )
    return _hex_hmac(secret, to_sign.encode("utf-8"), hashlib.sha256)


def verify_flow_signature(params: Mapping[str, object], secret: str) -> bool:
    received = params.get(FLOW_SIGNATURE_PARAM)
    if not received:
        return False
    return hmac.compare_digest(flow_sign(params, secret), str(received).lower())


def nowpayments_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA512 over the raw, unparsed IPN body."""
    return _hex_hmac(secret, raw_body, hashlib.sha512)


def verify_nowpayments_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(nowpayments_signature(raw_body, secret), signature.strip().lower())


def parse_mercadopago_signature(x_signature: str) -> dict[str, str]:
    """Split `ts=...,v1=...` into its parts."""
    parts: dict[str, str] = {}
    for chunk in (x_signature or "").split(","):
        key, sep, value = chunk.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def mercadopago_manifest(data_id: str, request_id: str, ts: str) -> str:
    # Alphanumeric ids are signed lower-cased
    return f"id:{str(data_id).lower()};request-id:{request_id};ts:{ts};"


def verify_mercadopago_signature(
    x_signature: Optional[str],
    x_request_id: Optional[str],
    data_id: str,
    secret: str,
    *,
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> bool:
    parts = parse_mercadopago_signature(x_signature or "")
    ts, v1 = parts.get("ts"), parts.get("v1")
    if not ts or not v1 or not x_request_id:
        return False
    try:
        ts_value = int(ts)
    except ValueError:
        return False
    ts_seconds = ts_value / 1000 if ts_value > 10**12 else ts_value
    current = time.time() if now is None else now
    if abs(current - ts_seconds) > tolerance_seconds:
        return False
    expected = _hex_hmac(secret, mercadopago_manifest(data_id, x_request_id, ts).encode("utf-8"), hashlib.sha256)
    return hmac.compare_digest(expected, v1.lower())


def basic_auth_header(client_id: str, client_secret: str) -> str:
    """`Authorization` value for the OAuth2 client-credentials grant."""
    token = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"
