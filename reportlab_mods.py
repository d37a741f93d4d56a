"""reportlab/__init__.py runs ``import reportlab_mods`` (this file)."""

from typing import Any

from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Table, TableStyle

# One of the standard PDF fonts, which need no font files.
FONT_NAME = "Helvetica"
BOLD_FONT_NAME = "Helvetica-Bold"

width, height = A4
styles = getSampleStyleSheet()  # type: ignore[no-untyped-call]
styleN = styles["BodyText"]  # noqa: N816
styleN.fontName = FONT_NAME
styleN.alignment = TA_LEFT
styleBH = styles["Normal"]  # noqa: N816
styleBH.fontName = FONT_NAME
styleBH.alignment = TA_CENTER

styleTitle = styles["Title"]  # noqa: N816
styleTitle.fontName = BOLD_FONT_NAME

styleSubTitle = styles["Heading2"]  # noqa: N816
styleSubTitle.fontName = FONT_NAME


def create_table(data: Any) -> Table:
    table = Table(data, colWidths=[200, 300])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), "#2F5D62"),
                ("TEXTCOLOR", (0, 0), (-1, 0), "#FFFFFF"),
                ("FONTNAME", (0, 0), (-1, 0), BOLD_FONT_NAME),
                ("BOTTOMPADDING", (0, 0), (-1, 0), 12),
                ("BACKGROUND", (0, 1), (-1, -1), "#F2F2F2"),
                ("FONTNAME", (0, 1), (-1, -1), FONT_NAME),
                ("ALIGN", (0, 0), (-1, -1), "LEFT"),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ]
        )
    )

    return table
