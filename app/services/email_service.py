"""
Email Service

Sends transactional emails (upcoming bills, detected subscriptions, price
changes, renewal digests) over SMTP.
"""
import html
import logging
import os
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Union

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _smtp_settings() -> dict:
    return {
        "server": os.getenv("SMTP_SERVER", "smtp.gmail.com"),
        "port": int(os.getenv("SMTP_PORT", "587")),
        "sender": os.getenv("SENDER_EMAIL"),
        "password": os.getenv("SENDER_PASSWORD"),
    }


def _app_url() -> str:
    return os.getenv("APP_URL", "http://localhost:3000").rstrip("/")


def _format_date(value: Union[datetime, str, None]) -> str:
    if isinstance(value, datetime):
        return value.strftime("%B %d, %Y")
    if not value:
        return ""
    try:
        return datetime.fromisoformat(str(value)).strftime("%B %d, %Y")
    except ValueError:
        return str(value)


def _format_money(amount: float, currency: str = "USD") -> str:
    symbol = {"USD": "$", "GBP": "£", "EUR": "€"}.get((currency or "").upper())
    if symbol:
        return f"{symbol}{amount:.2f}"
    return f"{amount:.2f} {currency}"


def _wrap_html(title: str, body: str) -> str:
    return f"""<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #1f2937; margin-bottom: 20px;">{title}</h2>
  {body}
  <div style="margin-top: 24px; text-align: center;">
    <a href="{_app_url()}/dashboard/subscriptions"
       style="background-color: #3b82f6; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
      View All Subscriptions
    </a>
  </div>
</div>"""


def send_email(to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> bool:
    """
    Send an email with HTML and plain-text parts.

    Args:
        to: Recipient email address
        subject: Subject line
        html_body: HTML content
        text_body: Plain-text alternative

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    settings = _smtp_settings()
    if not settings["sender"] or not settings["password"]:
        logger.error("[EMAIL] Email credentials not configured. Set SENDER_EMAIL and SENDER_PASSWORD.")
        return False
    if not to:
        logger.error("[EMAIL] No recipient address given")
        return False

    message = MIMEMultipart("alternative")
    message["From"] = settings["sender"]
    message["To"] = to
    message["Subject"] = subject
    message.attach(MIMEText(text_body or subject, "plain"))
    message.attach(MIMEText(html_body, "html"))

    try:
        with smtplib.SMTP(settings["server"], settings["port"]) as server:
            server.starttls()
            server.login(settings["sender"], settings["password"])
            server.send_message(message)

        logger.info(f"[EMAIL] Sent '{subject}' to {to}")
        return True

    except smtplib.SMTPException as e:
        logger.error(f"[EMAIL] SMTP error sending email to {to}: {e}")
        return False
    except OSError as e:
        logger.error(f"[EMAIL] Error connecting to SMTP server for {to}: {e}")
        return False


def send_upcoming_bill_email(
    to: str,
    subscription_name: str,
    amount: float,
    currency: str,
    renewal_date: Union[datetime, str],
    days_until_renewal: int,
    user_name: Optional[str] = None,
) -> bool:
    day_word = "day" if days_until_renewal == 1 else "days"
    name = html.escape(subscription_name)
    money = _format_money(amount, currency)
    greeting = f"Hi {html.escape(user_name)}," if user_name else "Hi,"

    subject = f"{subscription_name} renews in {days_until_renewal} {day_word}"
    body = f"""<p>{greeting}</p>
  <p>Your <strong>{name}</strong> subscription renews on {_format_date(renewal_date)}
  for <strong>{money}</strong>.</p>
  <p style="color: #6b7280;">If you no longer use it, now is a good time to cancel.</p>"""
    text = (
        f"{greeting}\n\nYour {subscription_name} subscription renews on {_format_date(renewal_date)} "
        f"for {money}.\n\n{_app_url()}/dashboard/subscriptions"
    )
    return send_email(to, subject, _wrap_html("Upcoming Bill", body), text)


def send_new_subscription_detected_email(
    to: str,
    subscription_name: str,
    amount: float,
    currency: str,
    interval: str,
    confidence_score: Optional[float] = None,
    user_name: Optional[str] = None,
) -> bool:
    name = html.escape(subscription_name)
    money = _format_money(amount, currency)
    greeting = f"Hi {html.escape(user_name)}," if user_name else "Hi,"
    confidence = f" ({confidence_score * 100:.0f}% confidence)" if confidence_score is not None else ""

    subject = f"New subscription detected: {subscription_name}"
    body = f"""<p>{greeting}</p>
  <p>We found a recurring charge from <strong>{name}</strong>: {money} billed {html.escape(interval)}{confidence}.</p>
  <p style="color: #6b7280;">Review it in your dashboard to confirm or dismiss it.</p>"""
    text = (
        f"{greeting}\n\nWe found a recurring charge from {subscription_name}: {money} billed {interval}"
        f"{confidence}.\n\n{_app_url()}/dashboard/subscriptions"
    )
    return send_email(to, subject, _wrap_html("New Subscription Detected", body), text)


def send_price_change_email(
    to: str,
    subscription_name: str,
    old_amount: float,
    new_amount: float,
    currency: str,
    change_date: Union[datetime, str, None] = None,
    user_name: Optional[str] = None,
) -> bool:
    change = new_amount - old_amount
    percentage = (change / old_amount) * 100 if old_amount else 0.0
    direction = "increased" if change > 0 else "decreased"
    name = html.escape(subscription_name)
    greeting = f"Hi {html.escape(user_name)}," if user_name else "Hi,"
    when = f" on {_format_date(change_date)}" if change_date else ""

    subject = f"Price change: {subscription_name} {direction}"
    body = f"""<p>{greeting}</p>
  <p>The price of <strong>{name}</strong> {direction}{when} from {_format_money(old_amount, currency)}
  to <strong>{_format_money(new_amount, currency)}</strong> ({percentage:+.1f}%).</p>"""
    text = (
        f"{greeting}\n\nThe price of {subscription_name} {direction}{when} from "
        f"{_format_money(old_amount, currency)} to {_format_money(new_amount, currency)} ({percentage:+.1f}%)."
    )
    return send_email(to, subject, _wrap_html("Price Change Detected", body), text)


def send_renewal_reminder_email(to: str, reminders: List, now: Optional[datetime] = None) -> bool:
    """
    Digest of renewal reminders, urgent (high severity) ones first.

    `reminders` are renewal_reminder notifications.
    """
    now = now or datetime.utcnow()
    urgent = [r for r in reminders if r.severity == "high"]
    regular = [r for r in reminders if r.severity != "high"]

    def _rows(items) -> str:
        rows = []
        for reminder in items:
            days = max(0, (reminder.due_date - now).days + 1) if reminder.due_date else None
            when = f"Renews in {days} days" if days is not None else "Renews soon"
            rows.append(
                f"""<div style="margin-bottom: 12px; padding: 12px; background-color: white; border-radius: 6px;">
      <strong>{html.escape(reminder.merchant or '')}</strong><br>
      <span style="color: #6b7280;">{when}</span><br>
      <span style="color: #059669; font-weight: bold;">{(reminder.amount or 0):.2f}</span>
    </div>"""
            )
        return "\n".join(rows)

    sections = []
    if urgent:
        sections.append(
            f"""<div style="background-color: #fef2f2; border: 1px solid #fecaca; border-radius: 8px; padding: 16px; margin-bottom: 20px;">
    <h3 style="color: #dc2626; margin: 0 0 12px 0;">Urgent Renewals (Next 3 Days)</h3>
    {_rows(urgent)}
  </div>"""
        )
    if regular:
        sections.append(
            f"""<div style="background-color: #f0f9ff; border: 1px solid #bae6fd; border-radius: 8px; padding: 16px;">
    <h3 style="color: #0369a1; margin: 0 0 12px 0;">Upcoming Renewals</h3>
    {_rows(regular)}
  </div>"""
        )

    subject = f"Renewal Reminders - {'Urgent' if urgent else 'Upcoming'} Subscriptions"
    text = "\n".join(f"- {r.merchant}: {(r.amount or 0):.2f}" for r in reminders)
    return send_email(to, subject, _wrap_html("Subscription Renewal Reminders", "\n".join(sections)), text)
