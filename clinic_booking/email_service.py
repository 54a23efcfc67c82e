"""
Email Service using Resend
Provides email functionality using MJML templates for responsive design
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import CLINIC_NAME, EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import appointment_reminder_template, payment_receipt_template
from .models import Appointment, Payment

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns an object with 'html' and 'errors'
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
        raise Exception(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise Exception("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise Exception(f"Failed to send email: {str(e)}") from e


def _format_date(appointment: Appointment) -> str:
    d = appointment.appointment_date
    return f"{d:%B} {d.day}, {d.year}"


async def send_payment_receipt(appointment: Appointment, payment: Payment) -> dict:
    """Receipt to the patient after a confirmed payment"""
    mjml_content = payment_receipt_template(
        patient_name=appointment.patient.full_name,
        service_name=appointment.service.name,
        appointment_date=_format_date(appointment),
        appointment_time=appointment.slot.display_time,
        amount=payment.amount,
        currency=payment.currency,
        payment_method=payment.payment_method,
        transaction_reference=payment.transaction_reference or "-",
    )
    return await send_email(
        to=appointment.patient.email,
        subject=f"Payment Receipt - {CLINIC_NAME}",
        mjml_content=mjml_content,
    )


async def send_appointment_reminder(appointment: Appointment, is_today: bool = False) -> dict:
    mjml_content = appointment_reminder_template(
        patient_name=appointment.patient.full_name,
        service_name=appointment.service.name,
        appointment_date=_format_date(appointment),
        appointment_time=appointment.slot.display_time,
        is_today=is_today,
    )
    return await send_email(
        to=appointment.patient.email,
        subject=f"Appointment Reminder - {CLINIC_NAME}",
        mjml_content=mjml_content,
    )
