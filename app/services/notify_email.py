# File: app/services/notify_email.py

import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from datetime import datetime, timezone
from typing import Optional

import resend

from app.core.config import settings

logger = logging.getLogger(__name__)

FROM_NAME = settings.email_from_name
FROM_ADDR = settings.email_from_address

EMAIL_REDIRECT_TO = settings.email_redirect_to
EMAIL_DOMAIN_VERIFIED = settings.email_domain_verified
EMAIL_PROVIDER = settings.email_provider.lower()

SMTP_HOST = settings.smtp_host
SMTP_PORT = settings.smtp_port
SMTP_USERNAME = settings.smtp_username
SMTP_PASSWORD = settings.smtp_password
SMTP_USE_SSL = settings.smtp_use_ssl
RESEND_API_KEY = settings.resend_api_key

TIER_META = {
    1: {"label": "LEVEL 1: Ward Officer Alert", "color": "#f59e0b"},
    2: {"label": "LEVEL 2: Executive Engineer Escalation", "color": "#ef4444"},
    3: {"label": "LEVEL 3: Commissioner Weekly Report", "color": "#7c3aed"},
}

CELL = "padding:4px 8px;border-bottom:1px solid #e2e8f0;"

# ===================================================================
# Layout shared by every CivicPulse mail
# ===================================================================

LAYOUT = """
<div style="background:#f1f5f9;padding:20px 0;">
  <div style="max-width:600px;margin:0 auto;background:#ffffff;border:1px solid #e2e8f0;
              border-radius:10px;padding:20px;font-family:Arial,Helvetica,sans-serif;color:#0f172a;">
    <div style="border-bottom:3px solid #1e40af;padding-bottom:10px;margin-bottom:14px;">
      <span style="font-size:19px;font-weight:700;">CivicPulse</span>
      <span style="font-size:12px;color:#64748b;margin-left:8px;">SLA accountability notice</span>
    </div>
    <div style="font-size:14px;line-height:1.55;">%s</div>
    <div style="margin-top:18px;padding-top:10px;border-top:1px solid #e2e8f0;font-size:11px;color:#64748b;">
      Sent automatically by CivicPulse. Replies to this address are not monitored.%s
      <br/>&copy; %s Municipal grievance cell
    </div>
  </div>
</div>
"""


def _render(body: str) -> str:
    contact = f" Questions: {FROM_ADDR}." if FROM_ADDR else ""
    return LAYOUT % (body, contact, datetime.now(timezone.utc).year)


# ===================================================================
# Transports. Each returns (success, detail) and never raises.
# ===================================================================

def _sender() -> str:
    return f"{FROM_NAME} <{FROM_ADDR}>" if FROM_NAME else FROM_ADDR


def _send_email_via_smtp(to_email: str, subject: str, html_content: str) -> tuple[bool, str]:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = _sender()
    msg["To"] = to_email
    msg.attach(MIMEText(html_content, "html"))
    try:
        if SMTP_USE_SSL:
            server = smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, timeout=15)
        else:
            server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=15)
            server.starttls()
        with server:
            server.login(SMTP_USERNAME, SMTP_PASSWORD)
            server.send_message(msg)
        return True, f"smtp:{SMTP_HOST}"
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email via SMTP: {e}", exc_info=True)
        return False, f"smtp error: {e}"


def _send_email_via_resend(to_email: str, subject: str, html_content: str) -> tuple[bool, str]:
    resend.api_key = RESEND_API_KEY
    try:
        sent = resend.Emails.send({"from": _sender(), "to": [to_email], "subject": subject, "html": html_content})
    except Exception as e:
        logger.error(f"Failed to send email via Resend: {e}", exc_info=True)
        return False, f"resend error: {e}"
    message_id = sent.get("id") if isinstance(sent, dict) else None
    return True, f"resend:{message_id}" if message_id else "resend"


def email_configured() -> bool:
    if not FROM_ADDR:
        return False
    if EMAIL_PROVIDER == "resend":
        return bool(RESEND_API_KEY)
    return bool(SMTP_HOST and SMTP_USERNAME and SMTP_PASSWORD)


def _send_email(to_email: str, subject: str, html_content: str) -> tuple[bool, str]:
    """Send with the configured provider; without one the mail is only logged."""
    if not email_configured():
        logger.info("[EMAIL MOCK] to=%s subject=%s", to_email, subject)
        return True, "[mock]"
    if EMAIL_PROVIDER == "resend":
        return _send_email_via_resend(to_email, subject, html_content)
    return _send_email_via_smtp(to_email, subject, html_content)


# ===================================================================
# Test-mode redirect and links
# ===================================================================

def _get_recipient_and_note(original_email: str) -> tuple[str, str]:
    """Until the sending domain is verified, mail goes to EMAIL_REDIRECT_TO with a banner naming the real recipient."""
    if EMAIL_DOMAIN_VERIFIED or not EMAIL_REDIRECT_TO:
        return original_email, ""
    note = (
        '<p style="background:#fff1f2;border:1px solid #fda4af;color:#9f1239;'
        'padding:6px 10px;border-radius:6px;font-size:11px;">'
        f"Redirected for testing to {EMAIL_REDIRECT_TO}. Intended for: {original_email}</p>"
    )
    return EMAIL_REDIRECT_TO, note


def _build_url(path: str) -> str:
    base = (settings.frontend_base_url or "").strip().rstrip("/")
    path = path.lstrip("/")
    if not base:
        return f"/{path}"
    if "://" not in base:
        base = f"https://{base}"
    return f"{base}/{path}" if path else base


def _button(link: str, text: str) -> str:
    return (
        f'<p style="margin:14px 0 4px 0;"><a href="{link}" style="background:#1e40af;color:#ffffff;'
        f'padding:9px 18px;border-radius:6px;text-decoration:none;font-weight:600;">{text}</a></p>'
        f'<p style="font-size:11px;color:#475569;word-break:break-all;">{link}</p>'
    )


# ===================================================================
# 1) SLA escalation
# ===================================================================

def send_escalation_email(
    to_email: str,
    tier: int,
    issue_id: int,
    category: str,
    location: str,
    hours_elapsed: Optional[float],
    supporter_count: int,
    recipient_name: Optional[str] = None,
) -> tuple[bool, str]:
    actual_recipient, redirect_note = _get_recipient_and_note(to_email)
    meta = TIER_META.get(tier, TIER_META[1])
    hours = f"{hours_elapsed:.0f}" if hours_elapsed is not None else "unknown"

    weekly_note = ""
    if tier >= 3:
        weekly_note = (
            '<p style="font-weight:600;">Listed in the Commissioner\'s weekly pending report. '
            "A resolution is expected at the weekly status meeting.</p>"
        )

    body = f"""
    {redirect_note}
    <p style="font-size:16px;font-weight:700;color:{meta['color']};margin-top:0;">{meta['label']}</p>
    <p>Dear {recipient_name or 'Officer'},</p>
    <p>Issue <strong>#{issue_id}</strong> is past its SLA threshold and needs action.</p>
    <table cellpadding="0" cellspacing="0" style="font-size:13px;">
      <tr><td style="{CELL}">Category</td><td style="{CELL}">{category}</td></tr>
      <tr><td style="{CELL}">Location</td><td style="{CELL}">{location or 'Unknown'}</td></tr>
      <tr><td style="{CELL}">Hours since assignment</td><td style="{CELL}">{hours}</td></tr>
      <tr><td style="{CELL}">Citizens supporting</td><td style="{CELL}">{supporter_count}</td></tr>
    </table>
    {weekly_note}
    {_button(_build_url(f"issues/{issue_id}"), "Open issue")}
    """
    subject = f"CivicPulse SLA breach: issue #{issue_id} [{category}] {meta['label']}"
    return _send_email(actual_recipient, subject, _render(body))


# ===================================================================
# 2) Critical backlog digest
# ===================================================================

def send_backlog_digest(to_email: str, rows: list[dict], recipient_name: Optional[str] = None) -> tuple[bool, str]:
    """rows: dicts with id, category, ward_name, hours_pending, supporter_count."""
    actual_recipient, redirect_note = _get_recipient_and_note(to_email)

    lines = "".join(
        "<tr>"
        f'<td style="{CELL}">#{r["id"]}</td>'
        f'<td style="{CELL}">{r["category"]}</td>'
        f'<td style="{CELL}">{r.get("ward_name") or "Unrouted"}</td>'
        f'<td style="{CELL}">{r["hours_pending"] if r.get("hours_pending") is not None else "n/a"}</td>'
        f'<td style="{CELL}">{r.get("supporter_count", 1)}</td>'
        "</tr>"
        for r in rows
    )
    body = f"""
    {redirect_note}
    <p>Dear {recipient_name or 'Commissioner'},</p>
    <p>{len(rows)} issue(s) sit at the highest escalation level and are still open.</p>
    <table cellpadding="0" cellspacing="0" style="font-size:12px;width:100%;">
      <tr><th align="left">Issue</th><th align="left">Category</th><th align="left">Ward</th>
          <th align="left">Hours pending</th><th align="left">Supporters</th></tr>
      {lines}
    </table>
    {_button(_build_url("dashboard"), "Open dashboard")}
    """
    return _send_email(actual_recipient, f"CivicPulse critical pending issues ({len(rows)})", _render(body))
