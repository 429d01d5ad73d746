"""
Follow-up Service
Sends the prospect a confirmation email after a meeting is booked
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import pytz
from jinja2 import BaseLoader, Environment
from pydantic import BaseModel

from atlas.core.config import get_settings
from atlas.domain.interfaces.email_sender import EmailSender
from atlas.domain.interfaces.store import Store
from atlas.domain.services.availability_service import resolve_timezone

logger = logging.getLogger(__name__)


class ConfirmationTemplate(BaseModel):
    subject_template: str
    body_html_template: str
    body_template: str


BOOKING_CONFIRMATION = ConfirmationTemplate(
    subject_template="Meeting Booking Confirmation",
    body_html_template="""<p>Hello {{ prospect_name }},</p>
<p>Thank you for booking your meeting with {{ company_name }}.</p>
<p>The meeting will be held on {{ meeting_time }} in {{ time_zone }}.</p>
<p>The meeting details are as follows:</p>
<ul>
  <li>Meeting Time: {{ meeting_time }}</li>
  <li>Meeting Location: {{ company_name }}</li>
</ul>
<p>Thank you for your time.</p>""",
    body_template="""Hello {{ prospect_name }},

Thank you for booking your meeting with {{ company_name }}.
The meeting will be held on {{ meeting_time }} in {{ time_zone }}.

Thank you for your time.""",
)


def format_meeting_time(meeting_time: datetime, time_zone: Optional[str]) -> str:
    """e.g. 'Monday, January 5, 2026 at 9:00 AM EST'"""
    local = meeting_time.astimezone(resolve_timezone(time_zone))
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return (
        f"{local:%A}, {local:%B} {local.day}, {local.year} "
        f"at {hour}:{local:%M} {meridiem} {local.tzname()}"
    )


class FollowUpService:
    """
    Booking confirmation emails.

    At most one email is recorded per meeting; a redelivered task finds
    the existing row and does nothing.
    """

    def __init__(self, store: Store, sender: Optional[EmailSender] = None, from_address: Optional[str] = None):
        self.store = store
        self.sender = sender
        self.from_address = from_address or get_settings().followup_from_address
        self.env = Environment(loader=BaseLoader(), autoescape=True)

    def render(self, context: Dict[str, Any]) -> Dict[str, str]:
        template = BOOKING_CONFIRMATION
        return {
            "subject": self.env.from_string(template.subject_template).render(**context),
            "html": self.env.from_string(template.body_html_template).render(**context),
            "text": self.env.from_string(template.body_template).render(**context),
        }

    async def send_booking_confirmation(self, meeting_id: str) -> Optional[Dict[str, Any]]:
        """
        Email the prospect about their meeting.

        Returns:
            The recorded email row, or None when skipped
        """
        if await self.store.find_email_for_meeting(meeting_id):
            logger.info(f"Confirmation for meeting {meeting_id} already recorded")
            return None

        meeting = await self.store.get_meeting(meeting_id)
        if not meeting:
            logger.error(f"Meeting {meeting_id} not found")
            return None

        opportunity = await self.store.get_opportunity(meeting.opportunity_id)
        agency = await self.store.get_agency(meeting.agency_id)
        call = await self.store.get_call(meeting.call_id)
        if not opportunity or not agency or not call:
            logger.error(f"Missing related data for meeting {meeting_id}")
            return None

        time_zone = agency.time_zone or get_settings().default_timezone
        formatted = format_meeting_time(meeting.meeting_time, time_zone)
        logger.info(
            f"Meeting booked: {agency.company_name} with {opportunity.name} at {formatted} "
            f"(call {call.id}, {call.billing_seconds or 'unknown'}s)"
        )

        if not opportunity.email:
            logger.warning(f"No prospect email for meeting {meeting_id}, confirmation not sent")
            return None
        if self.sender is None:
            logger.warning("No email sender configured, confirmation not sent")
            return None

        content = self.render({
            "prospect_name": opportunity.name,
            "company_name": agency.company_name,
            "meeting_time": formatted,
            "time_zone": time_zone,
        })

        record: Dict[str, Any] = {
            "meeting_id": meeting.id,
            "opportunity_id": opportunity.id,
            "agency_id": agency.id,
            "from_address": self.from_address,
            "to_address": opportunity.email,
            "subject": content["subject"],
            "html": content["html"],
            "type": "prospect_confirmation",
        }
        try:
            record["provider_message_id"] = await self.sender.send(
                to=opportunity.email,
                subject=content["subject"],
                html=content["html"],
                text=content["text"],
            )
            record["status"] = "sent"
            record["sent_at"] = datetime.now(pytz.UTC)
        except Exception as e:
            logger.error(f"Failed to send confirmation for meeting {meeting_id}: {e}")
            record["status"] = "failed"
            record["error"] = str(e)

        return await self.store.insert_email(record)
