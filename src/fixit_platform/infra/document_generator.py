"""PDF generation for lease documents.

Builds the PDF in memory with reportlab, pushes the bytes to the object
store and hands back an unsaved Media row for the caller to persist inside
its own transaction.
"""

import asyncio
import io
import logging
from datetime import datetime

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from fixit_platform.domain.models import Media
from fixit_platform.infra.object_storage import ObjectStorage

logger = logging.getLogger(__name__)

DOCUMENT_TITLES = {
    "lease_agreement": "Lease Agreement",
    "lease_notice": "General Lease Notice",
    "renewal_notice": "Lease Renewal Notice",
    "exit_letter": "Tenant Exit Letter",
    "termination_notice": "Lease Termination Notice",
}


def _fmt(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%d %B %Y")
    if isinstance(value, float):
        return f"{value:,.2f}"
    return str(value)


class DocumentGenerator:
    """Render lease documents to PDF and upload them."""

    def __init__(self, storage: ObjectStorage):
        self.storage = storage

    def render(self, kind: str, data: dict) -> bytes:
        """Render a document to PDF bytes. ``data`` holds flat display fields."""
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=30,
            leftMargin=30,
            topMargin=30,
            bottomMargin=30,
        )

        styles = getSampleStyleSheet()
        styles.add(
            ParagraphStyle(
                name="TitleStyle",
                fontSize=18,
                alignment=TA_CENTER,
                spaceAfter=12,
                textColor=colors.HexColor("#1F2937"),
            )
        )
        styles.add(
            ParagraphStyle(
                name="SectionHeader",
                fontSize=12,
                spaceBefore=14,
                spaceAfter=6,
                textColor=colors.HexColor("#111827"),
                fontName="Helvetica-Bold",
            )
        )

        elements = [
            Paragraph(DOCUMENT_TITLES.get(kind, kind.replace("_", " ").title()), styles["TitleStyle"]),
            Spacer(1, 10),
        ]

        parties = Table(
            [
                ["Property", _fmt(data.get("property_name"))],
                ["Unit", _fmt(data.get("unit_name"))],
                ["Tenant", _fmt(data.get("tenant_name"))],
                ["Landlord", _fmt(data.get("landlord_name"))],
            ],
            colWidths=[120, None],
        )
        terms = Table(
            [
                ["Start Date", _fmt(data.get("lease_start_date"))],
                ["End Date", _fmt(data.get("lease_end_date"))],
                ["Monthly Rent", f"{_fmt(data.get('monthly_rent'))} {data.get('currency', '')}".strip()],
                ["Payment Due", f"Day {_fmt(data.get('payment_due_date'))} of each month"],
                ["Security Deposit", _fmt(data.get("security_deposit"))],
            ],
            colWidths=[120, None],
        )
        table_style = TableStyle(
            [
                ("BACKGROUND", (0, 0), (0, -1), colors.whitesmoke),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
                ("FONT", (0, 0), (0, -1), "Helvetica-Bold"),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ]
        )
        parties.setStyle(table_style)
        terms.setStyle(table_style)

        elements.append(Paragraph("Parties", styles["SectionHeader"]))
        elements.append(parties)
        elements.append(Paragraph("Terms", styles["SectionHeader"]))
        elements.append(terms)

        if data.get("terms_and_conditions"):
            elements.append(Paragraph("Terms and Conditions", styles["SectionHeader"]))
            elements.append(Paragraph(str(data["terms_and_conditions"]), styles["Normal"]))

        doc.build(elements)
        return buffer.getvalue()

    async def generate_and_upload(
        self,
        kind: str,
        data: dict,
        related_to: str,
        related_id: str,
        uploaded_by_id: str | None = None,
    ) -> Media:
        """Render, upload and return an unsaved Media row describing the PDF."""
        pdf_bytes = await asyncio.to_thread(self.render, kind, data)
        filename = f"{kind.replace('_', '-')}_{related_id}.pdf"
        uploaded = await self.storage.upload(pdf_bytes, "application/pdf", filename, folder="documents")
        logger.info("Generated %s document for %s %s", kind, related_to, related_id)
        return Media(
            url=uploaded["url"],
            filename=uploaded.get("public_id"),
            original_name=filename,
            mime_type="application/pdf",
            size=uploaded.get("size", len(pdf_bytes)),
            uploaded_by_id=uploaded_by_id,
            related_to=related_to,
            related_id=related_id,
            is_public=False,
            tags=[kind],
        )
