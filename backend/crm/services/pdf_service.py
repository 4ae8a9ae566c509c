# Overview: PDF rendering for proposals and invoices (reportlab).

from __future__ import annotations

import io
import logging
import os
from html import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from crm.time_utils import utcnow

logger = logging.getLogger(__name__)


class PdfRenderError(Exception):
    """Raised when a PDF cannot be produced or written."""


def _fmt_money(value, currency: str) -> str:
    return f"{value:,.2f} {currency}"


def _fmt_date(dt) -> str:
    return dt.strftime("%d.%m.%Y") if dt else "-"


class DocumentPdfRenderer:
    """
    Renders commercial documents to A4 PDFs under output_dir.

    Built from app config in create_app() and stored in
    app.extensions["crm.pdf"].
    """

    def __init__(self, *, output_dir: str, company_name: str, company_address: str = "",
                 company_phone: str = "", company_email: str = "", bank_name: str = "",
                 bank_iban: str = ""):
        self.output_dir = output_dir
        self.company_name = company_name
        self.company_address = company_address
        self.company_phone = company_phone
        self.company_email = company_email
        self.bank_name = bank_name
        self.bank_iban = bank_iban

        self.brand_color = colors.HexColor("#2c3e50")
        self.light_gray = colors.HexColor("#f1f5f9")

    @classmethod
    def from_config(cls, config) -> "DocumentPdfRenderer":
        return cls(
            output_dir=config["PDF_OUTPUT_DIR"],
            company_name=config.get("COMPANY_NAME", "CRM"),
            company_address=config.get("COMPANY_ADDRESS", ""),
            company_phone=config.get("COMPANY_PHONE", ""),
            company_email=config.get("COMPANY_EMAIL", ""),
            bank_name=config.get("BANK_NAME", ""),
            bank_iban=config.get("BANK_IBAN", ""),
        )

    def render_proposal(self, proposal) -> str:
        meta = [
            ["Proposal No:", proposal.number],
            ["Date:", _fmt_date(proposal.issue_date)],
            ["Valid until:", _fmt_date(proposal.valid_until)],
            ["Status:", proposal.status],
        ]
        return self._write(f"proposal-{proposal.number}.pdf", self._build(proposal, "PROPOSAL", meta, proposal.title))

    def render_invoice(self, invoice) -> str:
        meta = [
            ["Invoice No:", invoice.number],
            ["Date:", _fmt_date(invoice.issue_date)],
            ["Due date:", _fmt_date(invoice.due_date)],
            ["Status:", invoice.derived_status()],
        ]
        return self._write(f"invoice-{invoice.number}.pdf", self._build(invoice, "INVOICE", meta, None, show_bank=True))

    def _write(self, filename: str, content: bytes) -> str:
        try:
            os.makedirs(self.output_dir, exist_ok=True)
            path = os.path.join(self.output_dir, filename)
            with open(path, "wb") as fh:
                fh.write(content)
        except OSError as exc:
            raise PdfRenderError(f"Could not write PDF {filename}: {exc}") from exc
        logger.info("PDF written: %s", path)
        return path

    def _build(self, document, heading: str, meta: list, title: str | None, show_bank: bool = False) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=15 * mm,
            leftMargin=15 * mm,
            topMargin=15 * mm,
            bottomMargin=15 * mm,
            title=f"{heading.title()} {document.number}",
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle("DocTitle", parent=styles["Heading1"], textColor=self.brand_color, alignment=2)
        body_style = ParagraphStyle("DocBody", parent=styles["Normal"], fontSize=9)
        small_style = ParagraphStyle("DocSmall", parent=styles["Normal"], fontSize=8)
        currency = document.currency

        story = []

        company_lines = [self.company_name, self.company_address, self.company_phone, self.company_email]
        company_block = Paragraph("<br/>".join(escape(line) for line in company_lines if line), body_style)
        header = Table([[company_block, Paragraph(heading, title_style)]], colWidths=[100 * mm, 80 * mm])
        header.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
        story.append(header)
        story.append(Spacer(1, 8 * mm))

        customer = document.customer
        customer_lines = [customer.full_name, customer.company, customer.email, customer.phone]
        address = ", ".join(p for p in [customer.street, customer.city, customer.state, customer.zip_code, customer.country] if p)
        if address:
            customer_lines.append(address)
        customer_block = Paragraph("<b>Customer</b><br/>" + "<br/>".join(escape(line) for line in customer_lines if line), body_style)

        meta_table = Table(meta, colWidths=[30 * mm, 50 * mm])
        meta_table.setStyle(TableStyle([
            ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 9),
            ("FONT", (1, 0), (1, -1), "Helvetica", 9),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
        ]))
        info = Table([[customer_block, meta_table]], colWidths=[100 * mm, 80 * mm])
        info.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
        story.append(info)
        story.append(Spacer(1, 6 * mm))

        if title:
            story.append(Paragraph(f"<b>{escape(title)}</b>", styles["Heading3"]))

        rows = [["#", "Item", "Qty", "Unit price", "Disc. %", "Tax %", "Total"]]
        for idx, line in enumerate(document.lines, start=1):
            item = escape(line.name) if not line.description else f"{escape(line.name)}<br/><font size=7>{escape(line.description)}</font>"
            rows.append([
                str(idx),
                Paragraph(item, small_style),
                str(line.quantity),
                _fmt_money(line.unit_price, currency),
                f"{line.discount:g}",
                f"{line.tax_rate:g}",
                _fmt_money(line.line_total, currency),
            ])
        items = Table(rows, colWidths=[8 * mm, 62 * mm, 12 * mm, 30 * mm, 16 * mm, 16 * mm, 36 * mm], repeatRows=1)
        items.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), self.brand_color),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 8),
            ("FONT", (0, 1), (-1, -1), "Helvetica", 8),
            ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, self.light_gray]),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]))
        story.append(items)
        story.append(Spacer(1, 5 * mm))

        totals = document.totals()
        total_rows = [
            ["Subtotal:", _fmt_money(totals.subtotal, currency)],
            ["Line discounts:", _fmt_money(totals.item_discount_total, currency)],
            [f"General discount ({document.discount:g}%):", _fmt_money(totals.general_discount_total, currency)],
            ["Tax:", _fmt_money(totals.tax_total, currency)],
            ["Grand total:", _fmt_money(totals.grand_total, currency)],
        ]
        if show_bank:
            total_rows.append(["Paid:", _fmt_money(document.paid_total, currency)])
            total_rows.append(["Amount due:", _fmt_money(document.due_amount, currency)])
        totals_table = Table(total_rows, colWidths=[45 * mm, 35 * mm], hAlign="RIGHT")
        totals_table.setStyle(TableStyle([
            ("FONT", (0, 0), (-1, -1), "Helvetica", 9),
            ("FONT", (0, 4), (-1, 4), "Helvetica-Bold", 10),
            ("ALIGN", (1, 0), (1, -1), "RIGHT"),
            ("LINEABOVE", (0, 4), (-1, 4), 0.5, colors.black),
        ]))
        story.append(totals_table)

        if document.notes:
            story.append(Spacer(1, 5 * mm))
            story.append(Paragraph("<b>Notes</b>", body_style))
            story.append(Paragraph(escape(document.notes), body_style))
        if document.terms:
            story.append(Spacer(1, 3 * mm))
            story.append(Paragraph("<b>Terms</b>", body_style))
            story.append(Paragraph(escape(document.terms), body_style))
        if show_bank and (self.bank_name or self.bank_iban):
            story.append(Spacer(1, 5 * mm))
            story.append(Paragraph(
                f"<b>Bank details</b><br/>Bank: {self.bank_name or '-'}<br/>IBAN: {self.bank_iban or '-'}"
                f"<br/>Account holder: {self.company_name}",
                body_style,
            ))

        story.append(Spacer(1, 8 * mm))
        story.append(Paragraph(f"Generated {utcnow().strftime('%d.%m.%Y %H:%M')} UTC", small_style))

        doc.build(story)
        return buffer.getvalue()
