from __future__ import annotations
from datetime import timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from holeinone.db import utcnow
from holeinone.models.auth_token import MagicLinkToken
from holeinone.models.user import User
from holeinone.schemas.auth import EntryIntent
from holeinone.security import decode_token, hash_link_token
from holeinone.services import magic_links
from holeinone.services.errors import TokenAlreadyUsed, TokenExpired, TokenNotFound, ValidationError
from holeinone.services.magic_links import get_flow, issue_magic_link, redeem_magic_link, resolve_redirect


def _intent(email="john@example.com", **kw):
    return EntryIntent(email=email, **kw)


@pytest.mark.asyncio
async def test_issue_then_redeem_resumes_destination(session, mailer):
    issued = await issue_magic_link(
        session, mailer, flow_name="branded", intent=_intent(first_name="John", last_name="Smith", age_years=34),
        redirect_url="/entry/123",
    )
    assert issued.email_sent is True
    assert len(mailer.sent) == 1 and mailer.sent[0].to == "john@example.com"
    link = mailer.last_link()
    assert link.startswith("http://localhost:5173/auth/callback?token=")
    assert "redirect=%2Fentry%2F123" in link
    assert mailer.last_params()["token"] == issued.token

    result = await redeem_magic_link(session, issued.token)
    assert result.redirect_url == "/entry/123"
    assert result.user.email == "john@example.com"
    assert result.user.first_name == "John" and result.user.age_years == 34
    assert decode_token(result.access)["type"] == "access"
    assert decode_token(result.refresh)["sub"] == str(result.user.id)

    with pytest.raises(TokenAlreadyUsed):
        await redeem_magic_link(session, issued.token)


@pytest.mark.asyncio
async def test_only_hash_is_stored(session, mailer):
    issued = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(), redirect_url="/entry/1")
    row = await session.scalar(select(MagicLinkToken))
    assert row.token_hash == hash_link_token(issued.token)
    assert issued.token not in repr(issued)
    assert row.first_name == "Golfer" and row.age_years == 18


@pytest.mark.asyncio
async def test_second_issue_invalidates_first(session, mailer):
    first = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(), redirect_url="/entry/1")
    second = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(email=" John@Example.com "),
                                    redirect_url="/entry/1")
    with pytest.raises(TokenAlreadyUsed):
        await redeem_magic_link(session, first.token)
    result = await redeem_magic_link(session, second.token)
    assert result.user.email == "john@example.com"


@pytest.mark.asyncio
async def test_expired_wins_over_used(session, mailer):
    issued_at = utcnow() - timedelta(hours=1)
    issued = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(), redirect_url="/entry/1",
                                    now=issued_at)
    with pytest.raises(TokenExpired):
        await redeem_magic_link(session, issued.token)

    # Redeem while valid, then look again after expiry
    fresh = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(), redirect_url="/entry/1")
    await redeem_magic_link(session, fresh.token)
    with pytest.raises(TokenExpired):
        await redeem_magic_link(session, fresh.token, now=utcnow() + timedelta(minutes=16))


@pytest.mark.asyncio
async def test_expired_redeem_leaves_token_untouched(session, mailer):
    issued = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(), redirect_url="/entry/1")
    with pytest.raises(TokenExpired):
        await redeem_magic_link(session, issued.token, now=utcnow() + timedelta(minutes=15, seconds=1))
    row = await session.scalar(select(MagicLinkToken))
    await session.refresh(row)
    assert row.used is False and row.used_at is None


@pytest.mark.asyncio
async def test_unknown_token(session):
    with pytest.raises(TokenNotFound):
        await redeem_magic_link(session, "not-a-real-token")


@pytest.mark.asyncio
async def test_redeem_reuses_existing_account(session, mailer):
    session.add(User(email="john@example.com", first_name="Johnny", last_name="", role="admin", age_years=40))
    await session.commit()
    issued = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(phone="+15551234567"),
                                    redirect_url="/entry/9")
    result = await redeem_magic_link(session, issued.token)
    users = (await session.execute(select(User))).scalars().all()
    assert len(users) == 1
    # Placeholder defaults from a bare link never clobber the stored profile
    assert result.user.first_name == "Johnny"
    assert result.user.age_years == 40
    assert result.user.phone_e164 == "+15551234567"
    assert result.user.role == "admin"


@pytest.mark.asyncio
async def test_delivery_failure_keeps_token_valid(session, mailer):
    mailer.fail = True
    issued = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(), redirect_url="/entry/1")
    assert issued.email_sent is False and issued.delivery_error
    result = await redeem_magic_link(session, issued.token)
    assert result.redirect_url == "/entry/1"


@pytest.mark.asyncio
async def test_failed_session_issue_leaves_link_redeemable(session, mailer, monkeypatch):
    issued = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(), redirect_url="/entry/1")

    def signing_unavailable(*args, **kwargs):
        raise RuntimeError("signing key unavailable")

    monkeypatch.setattr(magic_links, "make_access_token", signing_unavailable)
    with pytest.raises(RuntimeError):
        await redeem_magic_link(session, issued.token)
    row = await session.scalar(select(MagicLinkToken).execution_options(populate_existing=True))
    assert row.used is False and row.used_at is None
    assert (await session.scalar(select(User))) is None

    monkeypatch.undo()
    result = await redeem_magic_link(session, issued.token)
    assert result.user.email == "john@example.com"


@pytest.mark.asyncio
async def test_redeem_losing_the_used_flip_is_already_used(session, mailer, monkeypatch):
    issued = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(), redirect_url="/entry/1")
    scalar = session.scalar

    async def read_then_other_redeemer_flips(*args, **kwargs):
        row = await scalar(*args, **kwargs)
        await session.execute(
            update(MagicLinkToken).values(used=True, used_at=utcnow()).execution_options(synchronize_session=False)
        )
        return row

    monkeypatch.setattr(session, "scalar", read_then_other_redeemer_flips)
    with pytest.raises(TokenAlreadyUsed):
        await redeem_magic_link(session, issued.token)
    monkeypatch.undo()
    assert (await session.scalar(select(User))) is None


def _token_row(token: str, email: str = "john@example.com", used: bool = False) -> MagicLinkToken:
    return MagicLinkToken(
        token_hash=hash_link_token(token), email=email, flow="otp", first_name="Golfer", age_years=18,
        redirect_url="/entry/1", expires_at=utcnow() + timedelta(minutes=15), used=used,
    )


@pytest.mark.asyncio
async def test_store_holds_one_unconsumed_link_per_email(session):
    session.add_all([_token_row("a", used=True), _token_row("b", used=True), _token_row("c"),
                     _token_row("d", email="jane@example.com")])
    await session.commit()
    session.add(_token_row("e"))
    with pytest.raises(IntegrityError):
        await session.commit()
    await session.rollback()


@pytest.mark.asyncio
async def test_issue_retries_when_a_concurrent_link_lands_first(session, mailer, monkeypatch):
    execute = session.execute
    rivals = []

    async def retire_then_rival_inserts(*args, **kwargs):
        result = await execute(*args, **kwargs)
        if not rivals:
            rivals.append(_token_row("rival"))
            session.add(rivals[0])
        return result

    monkeypatch.setattr(session, "execute", retire_then_rival_inserts)
    issued = await issue_magic_link(session, mailer, flow_name="otp", intent=_intent(), redirect_url="/entry/1")
    monkeypatch.undo()
    assert issued.email_sent is True
    live = (await session.execute(
        select(MagicLinkToken).where(MagicLinkToken.used.is_(False))
    )).scalars().all()
    assert [t.token_hash for t in live] == [hash_link_token(issued.token)]
    assert (await redeem_magic_link(session, issued.token)).user.email == "john@example.com"


@pytest.mark.asyncio
@pytest.mark.parametrize("flow,intent,message", [
    ("otp", dict(email="not-an-email"), "Invalid email"),
    ("otp", dict(email="a" * 250 + "@example.com"), "Invalid email"),
    ("branded", dict(email="john@example.com"), "First name"),
    ("branded", dict(email="john@example.com", first_name="John", age_years=12), "Age must be between 13"),
    ("secure", dict(email="john@example.com", first_name="John", age_years=15), "Age must be between 16"),
    ("secure", dict(email="john@example.com", first_name="John", handicap=60), "Handicap"),
])
async def test_validation_rejects_before_any_write(session, mailer, flow, intent, message):
    with pytest.raises(ValidationError) as exc:
        await issue_magic_link(session, mailer, flow_name=flow, intent=EntryIntent(**intent), redirect_url="/entry/1")
    assert message in exc.value.message
    assert (await session.scalar(select(MagicLinkToken))) is None
    assert mailer.sent == []


def test_flows_and_redirects():
    assert get_flow("otp").ttl == timedelta(minutes=15)
    assert get_flow("branded").ttl == timedelta(hours=6)
    assert get_flow("secure").strictness == "strict"
    with pytest.raises(ValidationError):
        get_flow("sms")
    assert resolve_redirect("/entry/123", get_flow("branded")) == ("http://localhost:5173", "/entry/123")
    assert resolve_redirect("https://other.example.org/x", get_flow("otp"))[0] == "https://other.example.org"
    with pytest.raises(ValidationError):
        resolve_redirect("https://other.example.org/x", get_flow("branded"))
    for bad in ("javascript:alert(1)", "//evil.example.com/x", "entry/123"):
        with pytest.raises(ValidationError):
            resolve_redirect(bad, get_flow("otp"))


def test_entry_intent_defaults_and_supplied_fields():
    intent = EntryIntent(email=" Jane@Example.COM ", first_name="  ", last_name=None, handicap=12.4)
    assert intent.email == "jane@example.com"
    assert intent.first_name == "Golfer" and intent.last_name == "" and intent.age_years == 18
    assert "first_name" not in intent.model_fields_set
    assert "handicap" in intent.model_fields_set
