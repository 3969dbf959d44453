# File: app/services/notify_sms.py
import logging
import requests
from app.core.config import settings

logger = logging.getLogger(__name__)

TWILIO_SID = settings.twilio_account_sid
TWILIO_TOKEN = settings.twilio_auth_token
TWILIO_FROM = settings.twilio_from
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

def sms_configured() -> bool:
    return bool(TWILIO_SID and TWILIO_TOKEN and TWILIO_FROM)

def send_sms(to: str, body: str, timeout: float = 15) -> tuple[bool, str]:
    """Send through the Twilio REST API. Without credentials the message is only logged."""
    if not sms_configured():
        logger.info("[SMS MOCK] to=%s body=%s", to, body)
        return True, "[mock]"
    try:
        r = requests.post(
            TWILIO_URL.format(sid=TWILIO_SID),
            auth=(TWILIO_SID, TWILIO_TOKEN),
            data={"From": TWILIO_FROM, "To": to, "Body": body},
            timeout=timeout,
        )
        r.raise_for_status()
        return True, f"twilio:{r.json().get('sid')}"
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Failed to send SMS via Twilio: {e}", exc_info=True)
        return False, f"twilio error: {e}"

def build_escalation_sms(tier: int, issue_id: int, category: str, place: str, hours_elapsed) -> str:
    hours = f"{hours_elapsed:.0f}" if hours_elapsed is not None else "?"
    link = f"{settings.frontend_base_url.rstrip('/')}/issues/{issue_id}" if settings.frontend_base_url else f"issue #{issue_id}"
    if tier >= 3:
        return (
            f"CivicPulse CRITICAL: Issue #{issue_id} ({category}) scheduled for Commissioner's weekly review. "
            f"Pending {hours} hours. View: {link}"
        )
    if tier == 2:
        return (
            f"CivicPulse URGENT: Issue #{issue_id} ({category}) in {place or 'Unknown ward'} has been unresolved "
            f"for {hours} hours. Immediate action required. View: {link}"
        )
    return f"CivicPulse Alert: Issue #{issue_id} requires attention."
