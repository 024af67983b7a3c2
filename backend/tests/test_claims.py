from __future__ import annotations
import pytest

from holeinone.config import settings
from holeinone.services import claims
from holeinone.services.attempt_window import open_entry, report_outcome
from holeinone.services.errors import InvalidTransition, NotFound


async def _claim(session, player, competition):
    entry = await open_entry(session, player.id, competition.id)
    result = await report_outcome(session, entry.id, player.id, "win")
    return result.verification


@pytest.mark.asyncio
async def test_full_path_to_verified(session, mailer, player, admin, competition):
    claim = await _claim(session, player, competition)
    claim = await claims.submit_evidence(session, mailer, claim.id, player.id, selfie_url="https://cdn.example.com/s.jpg",
                                         witness_name="Alex", witness_email="alex@example.com")
    assert claim.status == "pending"
    assert claim.evidence_captured_at is not None and claim.witness_email == "alex@example.com"
    claim = await claims.move_to_review(session, claim.id)
    assert claim.status == "under_review"
    claim = await claims.approve(session, mailer, claim.id, admin)
    assert claim.status == "verified"
    assert claim.verified_by == admin.id and claim.verified_at is not None
    assert claims.claim_warnings(claim) == ["witness_unconfirmed"]
    assert mailer.sent[-1].to == player.email
    assert "verified" in mailer.sent[-1].subject


@pytest.mark.asyncio
async def test_verified_is_absorbing(session, mailer, player, admin, competition):
    claim = await _claim(session, player, competition)
    await claims.submit_evidence(session, mailer, claim.id, player.id)
    await claims.approve(session, mailer, claim.id, admin)
    with pytest.raises(InvalidTransition):
        await claims.reject(session, mailer, claim.id, admin)
    with pytest.raises(InvalidTransition):
        await claims.move_to_review(session, claim.id)
    with pytest.raises(InvalidTransition):
        await claims.submit_evidence(session, mailer, claim.id, player.id)
    assert (await claims.get_claim(session, claim.id)).status == "verified"


@pytest.mark.asyncio
async def test_refused_transition_keeps_loaded_objects_usable(session, mailer, player, admin, competition):
    claim = await _claim(session, player, competition)
    await claims.approve(session, mailer, claim.id, admin)
    for _ in range(2):
        with pytest.raises(InvalidTransition):
            await claims.reject(session, mailer, claim.id, admin)
    # Nothing was written, so nothing held by the caller was expired
    assert admin.id is not None and claim.id is not None
    with pytest.raises(InvalidTransition):
        await claims.approve(session, mailer, claim.id, admin)
    assert (await claims.get_claim(session, claim.id)).verified_by == admin.id


@pytest.mark.asyncio
async def test_rejected_is_absorbing_and_review_needs_pending(session, mailer, player, admin, competition):
    claim = await _claim(session, player, competition)
    with pytest.raises(InvalidTransition):
        await claims.move_to_review(session, claim.id)
    rejected = await claims.reject(session, mailer, claim.id, admin)
    assert rejected.status == "rejected"
    with pytest.raises(InvalidTransition):
        await claims.approve(session, mailer, claim.id, admin)


@pytest.mark.asyncio
async def test_no_backward_move_from_review(session, mailer, player, competition):
    claim = await _claim(session, player, competition)
    await claims.submit_evidence(session, mailer, claim.id, player.id)
    await claims.move_to_review(session, claim.id)
    with pytest.raises(InvalidTransition):
        await claims.submit_evidence(session, mailer, claim.id, player.id)


@pytest.mark.asyncio
async def test_evidence_only_from_owner(session, mailer, player, other_player, competition):
    claim = await _claim(session, player, competition)
    with pytest.raises(NotFound):
        await claims.submit_evidence(session, mailer, claim.id, other_player.id)


@pytest.mark.asyncio
async def test_decision_email_failure_does_not_undo_decision(session, mailer, player, admin, competition):
    claim = await _claim(session, player, competition)
    mailer.fail = True
    claim = await claims.approve(session, mailer, claim.id, admin)
    assert claim.status == "verified"


@pytest.mark.asyncio
async def test_counts_and_listing(session, mailer, player, other_player, admin, competition):
    a = await _claim(session, player, competition)
    b = await _claim(session, other_player, competition)
    await claims.reject(session, mailer, b.id, admin)
    counts = await claims.status_counts(session)
    assert counts == {"total": 2, "pending": 1, "under_review": 0, "verified": 0, "rejected": 1}
    assert [c.id for c in await claims.list_claims(session, status="pending")] == [a.id]
    assert [c.id for c in await claims.list_claims(session, status="rejected")] == [b.id]


@pytest.mark.asyncio
async def test_first_evidence_notifies_adjudicators(session, mailer, player, competition, monkeypatch):
    monkeypatch.setattr(settings, "claims_notify_email", "claims@pinevalley.test")
    claim = await _claim(session, player, competition)
    await claims.submit_evidence(session, mailer, claim.id, player.id, selfie_url="https://cdn.example.com/s.jpg")
    assert len(mailer.sent) == 1
    notice = mailer.sent[0]
    assert notice.to == "claims@pinevalley.test"
    assert notice.sender == settings.claims_email_from
    assert notice.subject == "New Hole-in-One Claim: Pat Tester at Pine Valley"
    assert "pat@example.com" in notice.html
    assert f"/admin/claims/{claim.id}" in notice.html
    # Topping up evidence later does not notify again
    await claims.submit_evidence(session, mailer, claim.id, player.id, witness_name="Alex")
    assert len(mailer.sent) == 1


@pytest.mark.asyncio
async def test_adjudicator_notice_is_best_effort(session, mailer, player, competition, monkeypatch):
    monkeypatch.setattr(settings, "claims_notify_email", "claims@pinevalley.test")
    claim = await _claim(session, player, competition)
    mailer.fail = True
    claim = await claims.submit_evidence(session, mailer, claim.id, player.id)
    assert claim.status == "pending"


@pytest.mark.asyncio
async def test_no_adjudicator_notice_without_address(session, mailer, player, competition, monkeypatch):
    monkeypatch.setattr(settings, "claims_notify_email", "")
    claim = await _claim(session, player, competition)
    await claims.submit_evidence(session, mailer, claim.id, player.id)
    assert mailer.sent == []
