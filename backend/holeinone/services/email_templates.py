from __future__ import annotations
from datetime import datetime, timezone as dt_tz
from html import escape

from holeinone.config import settings

_BASE_STYLE = (
    "margin:0;padding:0;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;"
    "background-color:#f5f7fa;"
)
_BUTTON_STYLE = (
    "background:#C7A24C;color:#ffffff;text-decoration:none;padding:16px 32px;"
    "border-radius:8px;font-size:18px;font-weight:600;display:inline-block;"
)


def _layout(title: str, body: str) -> str:
    year = datetime.now(dt_tz.utc).year
    brand = escape(settings.app_display_name)
    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"><title>{escape(title)}</title></head>
<body style="{_BASE_STYLE}">
  <div style="max-width:600px;margin:0 auto;background-color:#ffffff;">
    <div style="background:#0F3D2E;padding:30px 20px;text-align:center;color:#ffffff;font-size:28px;font-weight:700;">{brand}</div>
    <div style="padding:40px 30px;color:#4a5568;font-size:16px;line-height:1.6;">{body}</div>
    <div style="background:#f8fffe;padding:25px 30px;border-top:1px solid #e2f4f1;text-align:center;color:#6b7280;font-size:12px;">
      &copy; {year} {brand}. Questions? {escape(settings.support_email)}
    </div>
  </div>
</body>
</html>"""


def _button(href: str, label: str) -> str:
    return f'<div style="text-align:center;margin:35px 0;"><a href="{escape(href, quote=True)}" style="{_BUTTON_STYLE}">{escape(label)}</a></div>'


def _ttl_label(minutes: int) -> str:
    if minutes % 60 == 0 and minutes >= 60:
        hours = minutes // 60
        return f"{hours} hour" + ("s" if hours != 1 else "")
    return f"{minutes} minutes"


def magic_link_email(*, branded: bool, first_name: str, last_name: str, age_years: int,
                     handicap: float | None, competition_name: str | None, club_name: str | None,
                     link: str, ttl_minutes: int) -> tuple[str, str]:
    ttl = _ttl_label(ttl_minutes)
    competition = competition_name or "the competition"
    if not branded:
        subject = "Your secure entry link"
        body = (
            f"<p>Hi {escape(first_name)},</p>"
            f"<p>Use the button below to continue your entry into <strong>{escape(competition)}</strong>.</p>"
            f"{_button(link, 'Continue my entry')}"
            f"<p style=\"font-size:14px;color:#666;\">This secure link will expire in <strong>{ttl}</strong> and can only be used once.</p>"
        )
        return subject, _layout(subject, body)

    subject = f"Complete Your Entry - {competition_name or settings.app_display_name}"
    venue = f" at {escape(club_name)}" if club_name else ""
    details = [
        f"<div><strong>Name:</strong> {escape(first_name)} {escape(last_name)}</div>",
        f"<div><strong>Age:</strong> {age_years} years</div>",
        f"<div><strong>Handicap:</strong> {'No handicap' if handicap is None else handicap}</div>",
    ]
    if competition_name:
        details.append(f"<div><strong>Competition:</strong> {escape(competition_name)}</div>")
    if club_name:
        details.append(f"<div><strong>Venue:</strong> {escape(club_name)}</div>")
    body = (
        f"<h1 style=\"color:#0F3D2E;font-size:24px;text-align:center;\">Welcome, {escape(first_name)}!</h1>"
        f"<p>You're one click away from entering <strong>{escape(competition)}</strong>{venue}. "
        "Click the button below to complete your registration and secure your spot.</p>"
        f"{_button(link, 'Complete My Entry')}"
        "<div style=\"background:#f8fffe;border:1px solid #e2f4f1;border-radius:12px;padding:25px;font-size:14px;\">"
        "<h3 style=\"color:#0F3D2E;margin:0 0 15px 0;\">Your Entry Details</h3>"
        f"{''.join(details)}</div>"
        "<p style=\"color:#c53030;font-size:13px;text-align:center;\">"
        f"<strong>Security Notice:</strong> This secure link expires in {ttl} and can only be used once.</p>"
        "<p style=\"font-size:14px;\">If you didn't request this entry, you can safely ignore this email.</p>"
    )
    return subject, _layout(subject, body)


def witness_request_email(*, witness_name: str, player_name: str, competition_name: str,
                          club_name: str, hole_number: int | None, link: str, ttl_hours: int,
                          resent: bool = False) -> tuple[str, str]:
    subject = f"Witness Confirmation: Hole-in-One at {club_name or competition_name}"
    if resent:
        subject += " (Resent)"
    hole = hole_number if hole_number is not None else "-"
    body = (
        f"<h2 style=\"color:#111827;\">Hi {escape(witness_name)},</h2>"
        "<p>You've been listed as a witness for a hole-in-one claim.</p>"
        "<div style=\"background:#f9fafb;border-left:4px solid #10b981;padding:15px;\">"
        "<strong>Claim Details:</strong><br>"
        f"Player: {escape(player_name)}<br>"
        f"Competition: {escape(competition_name)}<br>"
        f"Club: {escape(club_name)}<br>"
        f"Hole: {hole}</div>"
        "<p>Please confirm that you witnessed this shot. It is a one-click process.</p>"
        f"{_button(link, 'Yes, I Witnessed This Shot')}"
        f"<p style=\"font-size:14px;color:#6b7280;\"><strong>Important:</strong> this confirmation link expires in {ttl_hours} hours.</p>"
        "<p style=\"font-size:12px;color:#9ca3af;\">If you did not witness this shot or believe you received this email in error, "
        "please contact us.</p>"
    )
    return subject, _layout(subject, body)


def claim_decision_email(*, first_name: str, competition_name: str, approved: bool) -> tuple[str, str]:
    if approved:
        subject = f"Your hole-in-one claim has been verified - {competition_name}"
        body = (
            f"<p>Congratulations {escape(first_name)}!</p>"
            f"<p>Your hole-in-one claim for <strong>{escape(competition_name)}</strong> has been verified. "
            "We'll be in touch shortly about your prize.</p>"
        )
    else:
        subject = f"Update on your hole-in-one claim - {competition_name}"
        body = (
            f"<p>Hi {escape(first_name)},</p>"
            f"<p>After review, we were unable to verify your claim for <strong>{escape(competition_name)}</strong>.</p>"
            f"<p>If you believe this is a mistake, please contact {escape(settings.support_email)}.</p>"
        )
    return subject, _layout(subject, body)


def claim_submitted_email(*, player_name: str, player_email: str, competition_name: str, club_name: str,
                          hole_number: int | None, status: str, submitted_at: datetime, review_link: str,
                          claim_id: str) -> tuple[str, str]:
    subject = f"New Hole-in-One Claim: {player_name} at {club_name or competition_name}"
    hole = hole_number if hole_number is not None else "-"
    body = (
        "<h2 style=\"color:#1f2937;\">New hole-in-one claim submitted</h2>"
        "<div style=\"background:#f3f4f6;padding:20px;border-radius:8px;\">"
        f"<div><strong>Player:</strong> {escape(player_name)} ({escape(player_email)})</div>"
        f"<div><strong>Competition:</strong> {escape(competition_name)}</div>"
        f"<div><strong>Club:</strong> {escape(club_name)}</div>"
        f"<div><strong>Hole:</strong> {hole}</div>"
        f"<div><strong>Claim Status:</strong> {escape(status)}</div>"
        f"<div><strong>Submitted:</strong> {submitted_at.strftime('%d %b %Y %H:%M UTC')}</div></div>"
        "<p style=\"color:#1e40af;\"><strong>Action Required:</strong> please review this claim to verify the hole-in-one.</p>"
        f"{_button(review_link, 'Review Claim')}"
        f"<p style=\"font-size:12px;color:#6b7280;\">Claim ID: {escape(claim_id)}</p>"
    )
    return subject, _layout(subject, body)
