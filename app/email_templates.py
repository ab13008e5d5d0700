"""
MJML Email Templates
Patient-facing appointment emails, compiled to HTML by the email service
"""

from html import escape
from typing import Optional
from urllib.parse import quote

from .config import FRONTEND_URL

# Hospital theme colors - Teal/Slate color scheme
THEME = {
    "primary": "#14b8a6",
    "primary_dark": "#0d9488",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
}

HOSPITAL_NAME = "Naman Hospital"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 40px 0 40px">
          <mj-column>
            <mj-text font-size="20px" font-weight="700" color="{THEME['primary_dark']}" padding="0 0 16px 0">
              {HOSPITAL_NAME}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 32px 0" />
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              The {HOSPITAL_NAME} Team
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def appointment_booked_template(
    patient_name: Optional[str],
    doctor_name: str,
    appointment_date: str,
    time_slot: str,
    tracking_code: str,
    amount: float,
    currency: str,
) -> str:
    """Sent once a paid booking is committed"""
    content = f"""
    <mj-text>
      Hi {escape(patient_name or 'Patient')},
    </mj-text>

    <mj-text>
      Your payment was received and your appointment with <strong>{escape(doctor_name)}</strong> is confirmed.
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}" padding="20px 0">
      <strong>Date:</strong> {appointment_date}<br/>
      <strong>Slot:</strong> {time_slot}<br/>
      <strong>Amount paid:</strong> {currency} {amount:,.2f}<br/>
      <strong>Tracking ID:</strong> {tracking_code}
    </mj-text>

    <mj-text>
      Thank you for choosing {HOSPITAL_NAME}.
    </mj-text>
    """

    return get_base_template(
        title="Appointment booked successfully",
        preview_text=f"Appointment confirmed - {tracking_code}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/track-appointment?code={quote(tracking_code or '')}",
        cta_label="Track your appointment",
    )


_STATUS_COPY = {
    "CONFIRMED": (
        "Your appointment is confirmed",
        "has been <strong>confirmed</strong>.",
        "Please arrive 10 minutes early with your previous medical records (if any).",
    ),
    "COMPLETED": (
        "Appointment completed",
        "has been marked as <strong>completed</strong>.",
        f"Thank you for trusting {HOSPITAL_NAME}. We wish you good health!",
    ),
    "CANCELLED": (
        "Appointment cancelled",
        "has been <strong>cancelled</strong>.",
        "Please contact us if you would like to reschedule.",
    ),
}


def appointment_status_subject(status: str) -> Optional[str]:
    copy = _STATUS_COPY.get(status)
    return copy[0] if copy else None


def appointment_status_template(
    status: str,
    patient_name: Optional[str],
    doctor_name: Optional[str],
    appointment_date: str,
    time_slot: str,
) -> Optional[str]:
    """Status-change email; None for statuses patients are not told about"""
    copy = _STATUS_COPY.get(status)
    if not copy:
        return None
    title, outcome, closing = copy

    content = f"""
    <mj-text>
      Hi {escape(patient_name or 'there')},
    </mj-text>

    <mj-text>
      Your appointment with {escape(doctor_name or 'our doctor')} on {appointment_date} at {time_slot} {outcome}
    </mj-text>

    <mj-text>
      {closing}
    </mj-text>
    """

    return get_base_template(title=title, preview_text=title, content_sections=content)
