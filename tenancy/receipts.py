import io
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from reportlab.lib.pagesizes import letter
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table

from reportlab_mods import create_table, styleN, styleTitle
from tenancy import serializers
from tenancy.i18n import _


def _format_amount(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def _format_date(value: date | datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d")


def create_receipt_table(receipt: serializers.Receipt, lang: str | None = None) -> Table:
    """
    Create a table of the receipt's information.

    :param receipt: The receipt's data.
    :param lang: The language of the labels.
    :return: The generated table.
    """
    data = [
        [_("Payment", lang), _("Data", lang)],
        [_("Receipt number", lang), receipt.receipt_number],
        [_("Reference", lang), receipt.reference_id],
        [_("Type", lang), _(receipt.type, lang)],
        [_("Status", lang), _(receipt.status, lang)],
        [_("Amount", lang), _format_amount(receipt.amount)],
        [_("Due date", lang), _format_date(receipt.due_date)],
        [_("Paid on", lang), _format_date(receipt.paid_at)],
        [_("Verified on", lang), _format_date(receipt.verified_at)],
        [_("Property", lang), Paragraph(receipt.property_title, styleN)],
        [_("Address", lang), Paragraph(receipt.property_address, styleN)],
    ]

    return create_table(data)


def build_receipt_pdf(receipt: serializers.Receipt, lang: str | None = None) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter)

    elements: list[Any] = []
    elements.append(Paragraph(_("Payment Receipt", lang), styleTitle))
    elements.append(Spacer(1, 20))
    elements.append(create_receipt_table(receipt, lang))

    doc.build(elements)
    return buffer.getvalue()
