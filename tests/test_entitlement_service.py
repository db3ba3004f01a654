from __future__ import annotations

import asyncio

import pytest

from esyasil.errors import InsufficientCreditsError
from esyasil.models.ledger import LedgerEventType
from esyasil.models.user import SubscriptionStatus, UserAccount


@pytest.mark.asyncio
async def test_create_default_account_grants_initial_credits(entitlements, db):
    account = await entitlements.create_default_account(
        "user-1", email="u@example.com", display_name="U"
    )
    assert account.credits == 5
    assert account.subscription_status == SubscriptionStatus.NONE

    stored = await db.get_user("user-1")
    assert stored.email == "u@example.com"


@pytest.mark.asyncio
async def test_create_default_account_concurrently_creates_one_record(entitlements, db):
    first, second = await asyncio.gather(
        entitlements.create_default_account("user-1"),
        entitlements.create_default_account("user-1"),
    )
    assert first.credits == second.credits == 5
    assert await db.count_users() == 1

    created = [
        e for e in await db.get_ledger_entries("user-1")
        if e.message == "Account created"
    ]
    assert len(created) == 1


@pytest.mark.asyncio
async def test_create_default_account_keeps_existing_balance(entitlements, db):
    await entitlements.create_default_account("user-1")
    await entitlements.consume("user-1", 3)

    account = await entitlements.create_default_account("user-1")
    assert account.credits == 2


@pytest.mark.asyncio
async def test_check_entitlement_by_credits(entitlements, db):
    await db.create_user_if_absent(UserAccount(id="user-1", credits=2))

    assert (await entitlements.check_entitlement("user-1", 2)).allowed
    denied = await entitlements.check_entitlement("user-1", 3)
    assert not denied.allowed
    assert denied.reason == "insufficient credits"


@pytest.mark.asyncio
async def test_missing_account_is_treated_as_one_credit(entitlements, db):
    assert (await entitlements.check_entitlement("ghost", 1)).allowed
    assert not (await entitlements.check_entitlement("ghost", 2)).allowed
    # Checking never writes
    assert await db.get_user("ghost") is None


@pytest.mark.asyncio
async def test_active_subscription_overrides_credits(entitlements, db):
    await db.create_user_if_absent(
        UserAccount(id="pro", credits=0, subscription_status=SubscriptionStatus.ACTIVE)
    )

    decision = await entitlements.check_entitlement("pro", 5)
    assert decision.allowed and decision.unlimited

    reservation = await entitlements.reserve("pro", 5)
    assert reservation.unlimited
    await entitlements.consume("pro", 5, reservation=reservation)

    account = await db.get_user("pro")
    assert account.credits == 0
    assert account.reserved_credits == 0


@pytest.mark.asyncio
async def test_reserve_holds_credits_until_consumed(entitlements, db):
    await db.create_user_if_absent(UserAccount(id="user-1", credits=5))

    reservation = await entitlements.reserve("user-1", 3)
    account = await db.get_user("user-1")
    assert account.credits == 5
    assert account.available_credits == 2

    with pytest.raises(InsufficientCreditsError):
        await entitlements.reserve("user-1", 3)

    await entitlements.consume("user-1", 3, reservation=reservation)
    account = await db.get_user("user-1")
    assert account.credits == 2
    assert account.reserved_credits == 0
    assert reservation.committed


@pytest.mark.asyncio
async def test_concurrent_reservations_cannot_overspend(entitlements, db):
    await db.create_user_if_absent(UserAccount(id="user-1", credits=5))

    results = await asyncio.gather(
        entitlements.reserve("user-1", 3),
        entitlements.reserve("user-1", 3),
        return_exceptions=True,
    )
    admitted = [r for r in results if not isinstance(r, Exception)]
    denied = [r for r in results if isinstance(r, InsufficientCreditsError)]
    assert len(admitted) == 1
    assert len(denied) == 1


@pytest.mark.asyncio
async def test_release_returns_held_credits(entitlements, db):
    await db.create_user_if_absent(UserAccount(id="user-1", credits=5))

    reservation = await entitlements.reserve("user-1", 4)
    await entitlements.release(reservation)
    await entitlements.release(reservation)

    account = await db.get_user("user-1")
    assert account.credits == 5
    assert account.reserved_credits == 0


@pytest.mark.asyncio
async def test_reserve_creates_missing_account_with_initial_grant(entitlements, db):
    reservation = await entitlements.reserve("ghost", 3)
    await entitlements.consume("ghost", 3, reservation=reservation)

    account = await db.get_user("ghost")
    assert account.credits == 2
    assert account.reserved_credits == 0

    # The initial grant is not handed out a second time
    assert (await entitlements.create_default_account("ghost")).credits == 2


@pytest.mark.asyncio
async def test_revoke_during_subscribed_batch_does_not_bill(entitlements, db):
    await db.create_user_if_absent(
        UserAccount(id="pro", credits=0, subscription_status=SubscriptionStatus.ACTIVE)
    )
    reservation = await entitlements.reserve("pro", 5)

    await entitlements.revoke_subscription("pro")
    await entitlements.consume("pro", 5, reservation=reservation)

    account = await db.get_user("pro")
    assert account.credits == 0
    assert account.reserved_credits == 0
    assert reservation.committed


@pytest.mark.asyncio
async def test_consume_without_reservation_decrements(entitlements, db):
    await db.create_user_if_absent(UserAccount(id="user-1", credits=5))
    await entitlements.consume("user-1", 2)
    assert (await db.get_user("user-1")).credits == 3

    with pytest.raises(ValueError):
        await entitlements.consume("user-1", 0)


@pytest.mark.asyncio
async def test_grant_and_revoke_subscription(entitlements, db):
    await entitlements.create_default_account("user-1")

    granted = await entitlements.grant_subscription("user-1", "cus_123")
    assert granted.subscription_status == SubscriptionStatus.ACTIVE
    assert granted.billing_customer_id == "cus_123"
    assert granted.credits == 9999

    revoked = await entitlements.revoke_subscription("user-1")
    assert revoked.subscription_status == SubscriptionStatus.EXPIRED
    # Revocation does not touch the balance
    assert revoked.credits == 9999

    entries = await db.get_ledger_entries("user-1")
    messages = [e.message for e in entries if e.event_type == LedgerEventType.SUBSCRIPTION]
    assert messages == ["Subscription granted", "Subscription revoked"]


@pytest.mark.asyncio
async def test_grant_subscription_creates_missing_account(entitlements, db):
    account = await entitlements.grant_subscription("new-user", "cus_9")
    assert account.is_subscribed
    assert account.reserved_credits == 0


@pytest.mark.asyncio
async def test_revoke_unknown_account_is_a_no_op(entitlements, db):
    assert await entitlements.revoke_subscription("nobody") is None
    assert await db.count_users() == 0


@pytest.mark.asyncio
async def test_ledger_file_mirrors_entries(entitlements, tmp_path):
    await entitlements.create_default_account("user-1")
    lines = (tmp_path / "ledger.log").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert '"Account created"' in lines[0]
