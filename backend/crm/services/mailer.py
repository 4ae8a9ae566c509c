# Overview: Outbound e-mail over SMTP for reset links, documents, payment and event reminders.

"""
SMTP mailer.

One Mailer is built from app config in create_app() and stored in
app.extensions["crm.mailer"]; routes and the reminder poller pass it to the
services that send mail. With MAIL_SUPPRESS_SEND the message is logged and
kept in `outbox` instead of being delivered. The outbox holds the most
recent OUTBOX_LIMIT messages.
"""

from __future__ import annotations

import logging
import os
import smtplib
import ssl
from collections import deque
from dataclasses import dataclass, field
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

logger = logging.getLogger(__name__)

OUTBOX_LIMIT = 500


class MailError(Exception):
    """Raised when a message cannot be delivered."""


@dataclass
class OutgoingMessage:
    to: list[str]
    subject: str
    html: str
    attachments: list[str] = field(default_factory=list)


def _fmt_date(dt) -> str:
    return dt.strftime("%d.%m.%Y") if dt else "-"


def _fmt_datetime(dt) -> str:
    return dt.strftime("%d.%m.%Y %H:%M") if dt else "-"


def _fmt_amount(value, currency: str) -> str:
    return f"{value:,.2f} {currency}"


class Mailer:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        use_ssl: bool = False,
        suppress_send: bool = False,
        company_name: str = "CRM",
        bank_name: str = "",
        bank_iban: str = "",
        timeout: int = 30,
        outbox_limit: int = OUTBOX_LIMIT,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.suppress_send = suppress_send
        self.company_name = company_name
        self.bank_name = bank_name
        self.bank_iban = bank_iban
        self.timeout = timeout
        self.outbox: deque[OutgoingMessage] = deque(maxlen=outbox_limit)

    @classmethod
    def from_config(cls, config) -> "Mailer":
        return cls(
            host=config["MAIL_HOST"],
            port=config["MAIL_PORT"],
            sender=config["MAIL_FROM"],
            username=config.get("MAIL_USERNAME"),
            password=config.get("MAIL_PASSWORD"),
            use_tls=config.get("MAIL_USE_TLS", True),
            use_ssl=config.get("MAIL_USE_SSL", False),
            suppress_send=config.get("MAIL_SUPPRESS_SEND", False),
            company_name=config.get("COMPANY_NAME", "CRM"),
            bank_name=config.get("BANK_NAME", ""),
            bank_iban=config.get("BANK_IBAN", ""),
            outbox_limit=config.get("MAIL_OUTBOX_LIMIT", OUTBOX_LIMIT),
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _build(self, message: OutgoingMessage) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = message.subject
        msg["From"] = f'"{self.company_name}" <{self.sender}>'
        msg["To"] = ", ".join(message.to)
        msg.attach(MIMEText(message.html, "html", "utf-8"))

        for path in message.attachments:
            if not path or not os.path.exists(path):
                continue
            part = MIMEBase("application", "pdf")
            with open(path, "rb") as fh:
                part.set_payload(fh.read())
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", f'attachment; filename="{os.path.basename(path)}"')
            msg.attach(part)
        return msg

    def send(self, to, subject: str, html: str, attachments: list[str] | None = None) -> OutgoingMessage:
        recipients = [to] if isinstance(to, str) else list(to)
        recipients = [r for r in recipients if r]
        if not recipients:
            raise MailError("No recipients")

        message = OutgoingMessage(to=recipients, subject=subject, html=html, attachments=list(attachments or []))

        if self.suppress_send:
            logger.info("Mail suppressed: to=%s subject=%s", ", ".join(recipients), subject)
            self.outbox.append(message)
            return message

        mime = self._build(message)
        try:
            if self.use_ssl:
                server = smtplib.SMTP_SSL(self.host, self.port, context=ssl.create_default_context(), timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            with server:
                if self.use_tls and not self.use_ssl:
                    server.starttls(context=ssl.create_default_context())
                if self.username:
                    server.login(self.username, self.password or "")
                server.sendmail(self.sender, recipients, mime.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP send failed to %s: %s", ", ".join(recipients), exc)
            raise MailError(f"Failed to send e-mail: {exc}") from exc

        logger.info("Mail sent: to=%s subject=%s", ", ".join(recipients), subject)
        return message

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _wrap(self, greeting: str, paragraphs: list[str]) -> str:
        body = "".join(f"<p>{p}</p>" for p in paragraphs)
        return (
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f"<h2>{escape(greeting)}</h2>{body}"
            f"<p>Best regards,<br>{escape(self.company_name)}</p>"
            "</div>"
        )

    def send_password_reset(self, user, reset_url: str) -> OutgoingMessage:
        html = self._wrap(f"Hello {user.full_name},", [
            "Click the link below to reset your password:",
            f'<a href="{escape(reset_url)}">{escape(reset_url)}</a>',
            "This link is valid for 30 minutes. If you did not request a reset, ignore this e-mail.",
        ])
        return self.send(user.email, f"{self.company_name} - Password reset request (valid for 30 minutes)", html)

    def send_proposal(self, proposal, *, to: str | None = None, pdf_path: str | None = None, message: str = "") -> OutgoingMessage:
        customer = proposal.customer
        paragraphs = [
            f"Please find attached our proposal <strong>{escape(proposal.number)}</strong>.",
            f"Amount: <strong>{_fmt_amount(proposal.grand_total, proposal.currency)}</strong>",
            f"Valid until: <strong>{_fmt_date(proposal.valid_until)}</strong>",
        ]
        if message:
            paragraphs.append(escape(message))
        paragraphs.append("Do not hesitate to contact us with any questions about this proposal.")
        html = self._wrap(f"Dear {customer.full_name},", paragraphs)
        return self.send(to or customer.email, f"Proposal: {proposal.number}", html, [pdf_path] if pdf_path else None)

    def send_invoice(self, invoice, *, to: str | None = None, pdf_path: str | None = None, message: str = "") -> OutgoingMessage:
        customer = invoice.customer
        paragraphs = [
            f"Please find attached invoice <strong>{escape(invoice.number)}</strong>.",
            f"Amount: <strong>{_fmt_amount(invoice.grand_total, invoice.currency)}</strong>",
            f"Due date: <strong>{_fmt_date(invoice.due_date)}</strong>",
        ]
        if message:
            paragraphs.append(escape(message))
        paragraphs.append("Do not hesitate to contact us with any questions about this invoice.")
        html = self._wrap(f"Dear {customer.full_name},", paragraphs)
        return self.send(to or customer.email, f"Invoice: {invoice.number}", html, [pdf_path] if pdf_path else None)

    def send_payment_reminder(self, invoice, *, days_overdue: int, pdf_path: str | None = None) -> OutgoingMessage:
        customer = invoice.customer
        html = self._wrap(f"Dear {customer.full_name},", [
            f"This is a payment reminder for invoice <strong>{escape(invoice.number)}</strong>.",
            f"Amount due: <strong>{_fmt_amount(invoice.due_amount, invoice.currency)}</strong>",
            f"Due date: <strong>{_fmt_date(invoice.due_date)}</strong>",
            f'<span style="color: red;">Overdue: <strong>{days_overdue} days</strong></span>',
            "Please arrange payment at your earliest convenience to the account below:",
            f"Bank: {escape(self.bank_name or '-')}<br>IBAN: {escape(self.bank_iban or '-')}<br>"
            f"Account holder: {escape(self.company_name)}",
        ])
        return self.send(customer.email, f"Payment reminder: Invoice {invoice.number}", html, [pdf_path] if pdf_path else None)

    def send_event_reminder(self, event, reminder) -> OutgoingMessage:
        paragraphs = [
            f"Reminder: <strong>{escape(event.title)}</strong> starts at {_fmt_datetime(event.start_at)} (UTC).",
        ]
        if event.location:
            paragraphs.append(f"Location: {escape(event.location)}")
        if event.customer:
            paragraphs.append(f"Customer: {escape(event.customer.full_name)}")
        if event.description:
            paragraphs.append(escape(event.description))
        html = self._wrap(f"Hello {event.user.full_name},", paragraphs)
        return self.send(event.user.email, f"Event reminder: {event.title} ({reminder.minutes_before} min)", html)

    def send_event_invitation(self, event, attendees, *, action: str = "created") -> OutgoingMessage:
        """Notify attendees that an event was created, updated or cancelled."""
        subjects = {
            "created": f"Invitation: {event.title}",
            "updated": f"Updated: {event.title}",
            "cancelled": f"Cancelled: {event.title}",
        }
        paragraphs = [
            f"<strong>{escape(event.title)}</strong> has been {escape(action)}.",
            f"Start: {_fmt_datetime(event.start_at)} (UTC)<br>End: {_fmt_datetime(event.end_at)} (UTC)",
        ]
        if event.location:
            paragraphs.append(f"Location: {escape(event.location)}")
        if event.description:
            paragraphs.append(escape(event.description))
        html = self._wrap("Hello,", paragraphs)
        return self.send([a.email for a in attendees], subjects.get(action, subjects["updated"]), html)
