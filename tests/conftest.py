from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import time
from typing import Dict, List

import pytest

from esyasil.db.memory import InMemoryDBManager
from esyasil.errors import GenerationFailure, TransportFailure, UnauthorizedError
from esyasil.logging.ledger_logger import LedgerLogger
from esyasil.models.user import AuthenticatedUser
from esyasil.services.batch_service import BatchService
from esyasil.services.entitlement_service import EntitlementService

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 32
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


WEBHOOK_SECRET = "whsec_test_secret"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a `Stripe-Signature` header for `payload`."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def webhook_event(event_type: str, obj: dict, event_id: str = "evt_1") -> bytes:
    body = {"id": event_id, "type": event_type, "data": {"object": obj}}
    return json.dumps(body).encode("utf-8")


class FakeDispatcher:
    """
    Echoes each image back with a marker prefix.

    Images listed in `failures` raise the mapped error instead; `delay`
    keeps calls in flight so concurrent batches overlap.
    """

    def __init__(self, failures: Dict[str, Exception] | None = None, delay: float = 0.0) -> None:
        self.failures = failures or {}
        self.delay = delay
        self.calls: List[str] = []

    async def remove_furniture(self, encoded_image: str) -> str:
        self.calls.append(encoded_image)
        if self.delay:
            await asyncio.sleep(self.delay)
        if encoded_image in self.failures:
            raise self.failures[encoded_image]
        return "done-" + encoded_image


class FakeVerifier:
    def __init__(self, tokens: Dict[str, AuthenticatedUser] | None = None) -> None:
        self.tokens = tokens or {}

    async def verify(self, token: str) -> AuthenticatedUser:
        try:
            return self.tokens[token]
        except KeyError:
            raise UnauthorizedError("invalid token") from None


@pytest.fixture
def db() -> InMemoryDBManager:
    return InMemoryDBManager()


@pytest.fixture
def ledger(db, tmp_path) -> LedgerLogger:
    return LedgerLogger(db=db, file_path=tmp_path / "ledger.log")


@pytest.fixture
def entitlements(db, ledger) -> EntitlementService:
    return EntitlementService(db=db, ledger=ledger)


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher(
        failures={
            "bad-generation": GenerationFailure("model returned no image"),
            "bad-transport": TransportFailure("connection reset"),
        }
    )


@pytest.fixture
def alice() -> AuthenticatedUser:
    return AuthenticatedUser(uid="alice", email="alice@example.com", display_name="Alice")


@pytest.fixture
def verifier(alice) -> FakeVerifier:
    return FakeVerifier({"alice-token": alice})


@pytest.fixture
def batch_service(entitlements, dispatcher, db, ledger, verifier) -> BatchService:
    return BatchService(
        entitlements=entitlements,
        dispatcher=dispatcher,
        db=db,
        ledger=ledger,
        verifier=verifier,
    )
