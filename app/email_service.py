"""
Email Service using Resend
Compiles MJML templates and delivers appointment notifications.

Delivery is best effort: callers dispatch only after their database commit,
and a failed send is logged and reported, never raised into booking code.
"""

import asyncio
import logging
from typing import Optional, Protocol

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    appointment_booked_template,
    appointment_status_subject,
    appointment_status_template,
)
from .models import Appointment

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class NotificationDispatcher(Protocol):
    async def send(self, to_address: str, subject: str, body: str) -> bool: ...


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a result with 'html' and 'errors'
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        if hasattr(result, "html"):
            if getattr(result, "errors", None):
                logger.warning(f"MJML compilation warnings: {result.errors}")
            return result.html
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise RuntimeError(f"Failed to compile MJML template: {str(e)}") from e


class ResendEmailDispatcher:
    """Notification dispatcher backed by Resend"""

    def __init__(self, from_address: str = EMAIL_FROM_ADDRESS, api_key: Optional[str] = RESEND_API_KEY):
        self.from_address = from_address
        self.api_key = api_key

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """Send an MJML body; returns False instead of raising on any failure"""
        if not self.api_key:
            logger.warning("RESEND_API_KEY not configured. Skipping email send.")
            return False

        try:
            html_content = compile_mjml_to_html(body)
            email_data = {
                "from": self.from_address,
                "to": [to_address],
                "subject": subject,
                "html": html_content,
            }
            # resend's client is synchronous
            response = await asyncio.to_thread(resend.Emails.send, email_data)
            logger.info(f"Email sent to {to_address}: {response}")
            return True
        except Exception as e:
            logger.error(f"Email send error to {to_address}: {e}")
            return False


async def dispatch_safely(
    dispatcher: NotificationDispatcher, to_address: Optional[str], subject: str, body: str
) -> bool:
    """Run a dispatcher without letting its failures escape"""
    if not to_address:
        logger.warning("Unable to notify patient: email not available")
        return False
    try:
        return bool(await dispatcher.send(to_address, subject, body))
    except Exception as e:
        logger.error(f"Notification to {to_address} failed: {e}")
        return False


def appointment_booked_message(appointment: Appointment, currency: str) -> tuple[Optional[str], str, str]:
    """Recipient, subject and body for the booking confirmation"""
    patient = appointment.patient
    doctor = appointment.doctor
    body = appointment_booked_template(
        patient_name=patient.name if patient else None,
        doctor_name=doctor.name if doctor else "our doctor",
        appointment_date=appointment.date.strftime("%a %b %d %Y"),
        time_slot=appointment.time_slot,
        tracking_code=appointment.tracking_code,
        amount=appointment.amount,
        currency=currency,
    )
    return patient.email if patient else None, "Appointment booked successfully", body


async def send_appointment_status_email(
    dispatcher: NotificationDispatcher, appointment: Appointment, status: str
) -> bool:
    body = appointment_status_template(
        status=status,
        patient_name=appointment.patient.name if appointment.patient else None,
        doctor_name=appointment.doctor.name if appointment.doctor else None,
        appointment_date=appointment.date.strftime("%a %b %d %Y"),
        time_slot=appointment.time_slot,
    )
    if body is None:
        return False
    sent = await dispatch_safely(
        dispatcher,
        appointment.patient.email if appointment.patient else None,
        appointment_status_subject(status),
        body,
    )
    if sent:
        logger.info(f"Appointment {status} notification sent for {appointment.tracking_code}")
    return sent


def get_notification_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency; tests override it with an in-memory dispatcher"""
    return ResendEmailDispatcher()
