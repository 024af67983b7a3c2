from __future__ import annotations
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from holeinone.db import utcnow
from holeinone.models.verification import WitnessConfirmation
from holeinone.security import hash_link_token
from holeinone.services import claims
from holeinone.services.attempt_window import open_entry, report_outcome
from holeinone.services.errors import InvalidToken, InvalidTransition, LinkExpired, ValidationError
from holeinone.services.witness import coarse_ip, confirm_witness, issue_witness_token


async def _claim_with_witness(session, mailer, player, competition):
    entry = await open_entry(session, player.id, competition.id)
    claim = (await report_outcome(session, entry.id, player.id, "win")).verification
    return await claims.submit_evidence(session, mailer, claim.id, player.id, witness_name="Alex",
                                        witness_email="alex@example.com")


@pytest.mark.asyncio
async def test_issue_sends_link_valid_for_48_hours(session, mailer, player, competition):
    claim = await _claim_with_witness(session, mailer, player, competition)
    t0 = utcnow()
    req = await issue_witness_token(session, mailer, claim.id, now=t0)
    assert req.email_sent is True
    assert req.expires_at == t0 + timedelta(hours=48)
    assert mailer.sent[-1].to == "alex@example.com"
    assert "Pine Valley" in mailer.sent[-1].subject
    link = mailer.last_link()
    assert "/confirm-witness?" in link
    assert mailer.last_params() == {"id": str(claim.id), "token": req.token}


@pytest.mark.asyncio
async def test_confirm_once_then_already_confirmed(session, mailer, player, competition):
    claim = await _claim_with_witness(session, mailer, player, competition)
    req = await issue_witness_token(session, mailer, claim.id)

    first = await confirm_witness(session, claim.id, req.token, user_agent="Mozilla/5.0", ip_address="203.0.113.77")
    assert first.status == "confirmed"
    again = await confirm_witness(session, claim.id, req.token, now=utcnow() + timedelta(minutes=5))
    assert again.status == "already_confirmed"
    assert again.confirmed_at == first.confirmed_at

    wc = await session.scalar(select(WitnessConfirmation).execution_options(populate_existing=True))
    assert wc.meta_json["ip_address"] == "203.0.113.0/24"
    assert wc.meta_json["user_agent"] == "Mozilla/5.0"
    claim = await claims.get_claim(session, claim.id)
    assert claim.witness_confirmed_at == first.confirmed_at
    assert claims.claim_warnings(claim) == []
    # Advisory only: the claim's status is untouched
    assert claim.status == "pending"


@pytest.mark.asyncio
async def test_already_confirmed_even_after_expiry(session, mailer, player, competition):
    claim = await _claim_with_witness(session, mailer, player, competition)
    req = await issue_witness_token(session, mailer, claim.id)
    await confirm_witness(session, claim.id, req.token)
    late = await confirm_witness(session, claim.id, req.token, now=utcnow() + timedelta(days=3))
    assert late.status == "already_confirmed"


@pytest.mark.asyncio
async def test_expired_and_invalid_links(session, mailer, player, competition):
    claim = await _claim_with_witness(session, mailer, player, competition)
    req = await issue_witness_token(session, mailer, claim.id)
    with pytest.raises(LinkExpired):
        await confirm_witness(session, claim.id, req.token, now=utcnow() + timedelta(hours=48, seconds=1))
    with pytest.raises(InvalidToken):
        await confirm_witness(session, claim.id, "wrong-token")
    other = await _claim_with_witness(session, mailer, player, competition)
    # Token only works together with its own claim id
    with pytest.raises(InvalidToken):
        await confirm_witness(session, other.id, req.token)


@pytest.mark.asyncio
async def test_resend_retires_previous_link(session, mailer, player, competition):
    claim = await _claim_with_witness(session, mailer, player, competition)
    first = await issue_witness_token(session, mailer, claim.id)
    second = await issue_witness_token(session, mailer, claim.id)
    assert "(Resent)" in mailer.sent[-1].subject
    with pytest.raises(LinkExpired):
        await confirm_witness(session, claim.id, first.token)
    assert (await confirm_witness(session, claim.id, second.token)).status == "confirmed"


@pytest.mark.asyncio
async def test_issue_guards(session, mailer, player, admin, competition):
    entry = await open_entry(session, player.id, competition.id)
    bare = (await report_outcome(session, entry.id, player.id, "win")).verification
    with pytest.raises(ValidationError):
        await issue_witness_token(session, mailer, bare.id)
    await claims.reject(session, mailer, bare.id, admin)
    with pytest.raises(InvalidTransition):
        await issue_witness_token(session, mailer, bare.id, witness_email="alex@example.com")


def test_coarse_ip():
    assert coarse_ip("198.51.100.23") == "198.51.100.0/24"
    assert coarse_ip("198.51.100.23, 10.0.0.1") == "198.51.100.0/24"
    assert coarse_ip("2001:db8:abcd:12::1") == "2001:db8:abcd::/48"
    assert coarse_ip("not-an-ip") is None
    assert coarse_ip(None) is None


@pytest.mark.asyncio
async def test_store_holds_one_live_link_per_claim(session, mailer, player, competition):
    claim = await _claim_with_witness(session, mailer, player, competition)
    await issue_witness_token(session, mailer, claim.id)
    session.add(WitnessConfirmation(verification_id=claim.id, token_hash=hash_link_token("rival"),
                                    expires_at=utcnow() + timedelta(hours=48), meta_json={}))
    with pytest.raises(IntegrityError):
        await session.commit()
    await session.rollback()


@pytest.mark.asyncio
async def test_issue_retries_when_a_concurrent_link_lands_first(session, mailer, player, competition, monkeypatch):
    claim = await _claim_with_witness(session, mailer, player, competition)
    claim_id = claim.id
    execute = session.execute
    rivals = []

    async def retire_then_rival_inserts(*args, **kwargs):
        result = await execute(*args, **kwargs)
        if not rivals:
            rivals.append(WitnessConfirmation(verification_id=claim_id, token_hash=hash_link_token("rival"),
                                              expires_at=utcnow() + timedelta(hours=48), meta_json={}))
            session.add(rivals[0])
        return result

    monkeypatch.setattr(session, "execute", retire_then_rival_inserts)
    req = await issue_witness_token(session, mailer, claim_id)
    monkeypatch.undo()
    live = (await session.execute(
        select(WitnessConfirmation).where(WitnessConfirmation.retired_at.is_(None))
    )).scalars().all()
    assert [wc.id for wc in live] == [req.confirmation_id]
    assert (await confirm_witness(session, claim_id, req.token)).status == "confirmed"


@pytest.mark.asyncio
async def test_retired_link_cannot_be_confirmed(session, mailer, player, competition):
    claim = await _claim_with_witness(session, mailer, player, competition)
    t0 = utcnow()
    first = await issue_witness_token(session, mailer, claim.id, now=t0)
    await issue_witness_token(session, mailer, claim.id, now=t0 + timedelta(minutes=1))
    # Before its own expiry, but superseded
    with pytest.raises(LinkExpired):
        await confirm_witness(session, claim.id, first.token, now=t0 + timedelta(minutes=2))
