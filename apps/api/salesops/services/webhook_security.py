"""Webhook signature verification strategies.

Every inbound CRM webhook goes through a SignatureVerifier. Production uses
RSA-SHA256 over the raw body (base64 signature in x-wh-signature). The
unverified strategy exists for local development and tests only and refuses
to be built anywhere else.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from typing import Protocol

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from salesops.core.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-wh-signature"
UNVERIFIED_ALLOWED_ENVS = {"dev", "test"}


class SignatureVerifier(Protocol):
    def verify(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Return True only when the body is authentic."""


class RsaSignatureVerifier:
    """RSA PKCS#1 v1.5 / SHA-256 signature over the raw request body."""

    def __init__(self, public_key_pem: str):
        if not public_key_pem:
            raise ValueError("GHL_WEBHOOK_PUBLIC_KEY not configured")
        try:
            key = serialization.load_pem_public_key(public_key_pem.encode())
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise ValueError("GHL_WEBHOOK_PUBLIC_KEY is not a valid PEM public key") from exc
        if not isinstance(key, rsa.RSAPublicKey):
            raise ValueError("GHL_WEBHOOK_PUBLIC_KEY must be an RSA key")
        self._public_key = key

    def verify(self, body: bytes, headers: Mapping[str, str]) -> bool:
        signature = headers.get(SIGNATURE_HEADER, "")
        if not signature:
            logger.warning("Webhook missing signature header")
            return False
        try:
            raw_signature = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Webhook signature is not valid base64")
            return False
        try:
            self._public_key.verify(raw_signature, body, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature:
            logger.warning("Webhook invalid signature")
            return False
        return True


class UnverifiedSignatureVerifier:
    """Accepts every request. Development and tests only."""

    def __init__(self, env: str | None = None):
        env = env or settings.ENV
        if env not in UNVERIFIED_ALLOWED_ENVS:
            raise RuntimeError(
                f"WEBHOOK_SIGNATURE_MODE=none is not allowed in ENV={env}"
            )

    def verify(self, body: bytes, headers: Mapping[str, str]) -> bool:
        logger.warning("Webhook signature NOT verified (WEBHOOK_SIGNATURE_MODE=none)")
        return True


_verifier: SignatureVerifier | None = None


def build_signature_verifier() -> SignatureVerifier:
    mode = settings.WEBHOOK_SIGNATURE_MODE.strip().lower()
    if mode == "rsa":
        return RsaSignatureVerifier(settings.GHL_WEBHOOK_PUBLIC_KEY)
    if mode == "none":
        return UnverifiedSignatureVerifier()
    raise ValueError(f"Unknown WEBHOOK_SIGNATURE_MODE: {settings.WEBHOOK_SIGNATURE_MODE}")


def get_signature_verifier() -> SignatureVerifier:
    global _verifier
    if _verifier is None:
        _verifier = build_signature_verifier()
    return _verifier


def reset_signature_verifier() -> None:
    global _verifier
    _verifier = None
