"""
MJML Email Templates
Patient-facing emails, compiled to HTML by email_service
"""

from typing import Optional

from .config import (
    CANCELLATION_LEAD_HOURS,
    CLINIC_ADDRESS,
    CLINIC_NAME,
    CLINIC_PHONE,
    FRONTEND_URL,
)

# Clinic theme colors - Teal/Slate color scheme
THEME = {
    "primary": "#0E5C5C",
    "primary_light": "#ccfbf1",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#14b8a6",
    "warning": "#f59e0b",
    "warning_bg": "#fff3cd",
}


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

    contact_line = " | ".join(p for p in (CLINIC_ADDRESS, CLINIC_PHONE) if p)

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
        <mj-section background-color="{THEME['primary']}" padding="24px 20px">
          <mj-column>
            <mj-text align="center" font-size="22px" font-weight="700" color="#ffffff" padding="0">
              🦷 {CLINIC_NAME}
            </mj-text>
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="32px 40px 48px 40px">
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
              {CLINIC_NAME}<br/>{contact_line}
            </mj-text>
            <mj-text align="center" font-size="12px" color="#94a3b8" padding="12px 0 0 0">
              This is an automated message. Please do not reply to this email.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _details_block(rows: list[tuple[str, str]], highlight: bool = False) -> str:
    border = THEME["warning"] if highlight else THEME["primary"]
    background = THEME["warning_bg"] if highlight else THEME["background"]
    lines = "<br/>".join(f"<strong>{label}:</strong> {value}" for label, value in rows)
    return f"""
    <mj-text container-background-color="{background}" border-left="4px solid {border}" padding="16px 20px" font-size="15px">
      {lines}
    </mj-text>
    """


def payment_receipt_template(
    patient_name: str,
    service_name: str,
    appointment_date: str,
    appointment_time: str,
    amount: float,
    currency: str,
    payment_method: str,
    transaction_reference: str,
) -> str:
    """Receipt sent once a payment confirms the appointment"""
    symbol = "₱" if currency == "PHP" else f"{currency} "
    details = _details_block(
        [
            ("Service", service_name),
            ("Date", appointment_date),
            ("Time", appointment_time),
            ("Payment Method", payment_method),
            ("Transaction ID", transaction_reference),
        ]
    )
    content = f"""
    <mj-text>
      Hello {patient_name},
    </mj-text>

    <mj-text>
      Your payment has been successfully processed and your appointment is confirmed.
    </mj-text>

    <mj-text align="center" font-size="36px" font-weight="700" color="{THEME['success']}" padding="20px 0">
      {symbol}{amount:,.2f}
    </mj-text>

    {details}

    <mj-text>
      Thank you for trusting <strong>{CLINIC_NAME}</strong>!
    </mj-text>
    """

    return get_base_template(
        title="Payment Receipt",
        preview_text=f"✅ Payment received - {service_name} on {appointment_date}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/appointments",
        cta_label="View Appointment",
    )


def appointment_reminder_template(
    patient_name: str,
    service_name: str,
    appointment_date: str,
    appointment_time: str,
    is_today: bool = False,
) -> str:
    """Reminder for an upcoming confirmed appointment"""
    greeting = (
        "This is a reminder that your dental appointment is <strong>today</strong>."
        if is_today
        else "This is a friendly reminder about your dental appointment <strong>tomorrow</strong>."
    )
    details = _details_block(
        [
            ("Service", service_name),
            ("Date", appointment_date),
            ("Time", appointment_time),
        ],
        highlight=is_today,
    )
    content = f"""
    <mj-text>
      Dear <strong>{patient_name}</strong>,
    </mj-text>

    <mj-text>
      {greeting}
    </mj-text>

    {details}

    <mj-text font-size="15px">
      <strong>📋 Important Reminders:</strong><br/>
      • Please arrive <strong>10-15 minutes</strong> before your scheduled time<br/>
      • Bring your ID and any insurance information<br/>
      • Let us know if you need to reschedule at least {CANCELLATION_LEAD_HOURS} hours in advance
    </mj-text>

    <mj-text>
      We look forward to seeing you! 😊
    </mj-text>
    """

    return get_base_template(
        title="Appointment Reminder",
        preview_text=f"🦷 Your appointment on {appointment_date} at {appointment_time}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/appointments",
        cta_label="Manage Appointment",
    )
