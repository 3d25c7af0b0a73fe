"""
PDF templates rendered with reportlab.

Every generator returns a ``RenderedPdf`` (base64 payload + byte size). Rendering
errors are wrapped in ``PdfGenerationError``; callers choose whether that is fatal.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import date, datetime
from io import BytesIO
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_RIGHT
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

UGT_RED = colors.HexColor("#E30613")
DARK_GRAY = colors.HexColor("#333333")
ORG_NAME = "UGT-CLM-UGR Granada"
SIGNATURE = "Sección Sindical UGT-CLM-UGR Granada"

_MONTHS_ES = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)


class PdfGenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class RenderedPdf:
    file_data: str  # base64
    file_size: int

    @property
    def raw(self) -> bytes:
        return base64.b64decode(self.file_data)


def format_date_es(value: datetime | date | str | None) -> str:
    if value is None or value == "":
        value = datetime.utcnow()
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return escape(value)
    return f"{value.day} de {_MONTHS_ES[value.month - 1]} de {value.year}"


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("UgtTitle", parent=base["Heading1"], fontSize=22, textColor=UGT_RED, alignment=TA_CENTER, spaceAfter=6),
        "org": ParagraphStyle("UgtOrg", parent=base["Normal"], fontSize=13, textColor=DARK_GRAY, alignment=TA_CENTER, spaceAfter=18),
        "body": ParagraphStyle("UgtBody", parent=base["Normal"], fontSize=10, leading=14, textColor=DARK_GRAY, alignment=TA_JUSTIFY),
        "center": ParagraphStyle("UgtCenter", parent=base["Normal"], fontSize=10, textColor=DARK_GRAY, alignment=TA_CENTER),
        "highlight": ParagraphStyle("UgtHighlight", parent=base["Normal"], fontSize=14, leading=18, textColor=UGT_RED, alignment=TA_CENTER, spaceBefore=4, spaceAfter=4),
        "section": ParagraphStyle("UgtSection", parent=base["Heading3"], fontSize=12, textColor=DARK_GRAY, spaceBefore=10, spaceAfter=4),
        "right": ParagraphStyle("UgtRight", parent=base["Normal"], fontSize=9, textColor=DARK_GRAY, alignment=TA_RIGHT),
        "small": ParagraphStyle("UgtSmall", parent=base["Normal"], fontSize=8, textColor=colors.grey, alignment=TA_CENTER),
    }


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _render(elements: list, *, pagesize=A4, border: bool = False) -> RenderedPdf:
    buffer = BytesIO()
    try:
        doc = SimpleDocTemplate(
            buffer,
            pagesize=pagesize,
            rightMargin=2 * cm,
            leftMargin=2 * cm,
            topMargin=1.8 * cm,
            bottomMargin=1.5 * cm,
            title=ORG_NAME,
            author=ORG_NAME,
        )

        def _decorate(canvas, _doc):
            if not border:
                return
            width, height = pagesize
            canvas.saveState()
            canvas.setStrokeColor(UGT_RED)
            canvas.setLineWidth(3)
            canvas.rect(1 * cm, 1 * cm, width - 2 * cm, height - 2 * cm)
            canvas.restoreState()

        doc.build(elements, onFirstPage=_decorate, onLaterPages=_decorate)
        pdf = buffer.getvalue()
    except Exception as e:
        raise PdfGenerationError(f"PDF rendering failed: {e}") from e
    finally:
        buffer.close()
    return RenderedPdf(file_data=base64.b64encode(pdf).decode("ascii"), file_size=len(pdf))


def _signature(st: dict[str, ParagraphStyle]) -> list:
    return [
        Paragraph(f"Granada, {format_date_es(None)}", st["right"]),
        Spacer(1, 0.8 * cm),
        Paragraph("_________________________", st["center"]),
        Paragraph(SIGNATURE, st["center"]),
    ]


def generate_affiliation_certificate(user: Any) -> RenderedPdf:
    st = _styles()
    name = escape(str(_field(user, "name", ""))).upper()
    status = _field(user, "membership_status", "") or ""
    elements = [
        Paragraph("CERTIFICADO DE AFILIACIÓN", st["title"]),
        Paragraph(ORG_NAME, st["org"]),
        Paragraph(f"Mediante el presente documento, la {SIGNATURE} certifica que:", st["body"]),
        Spacer(1, 0.4 * cm),
        Paragraph(name, st["highlight"]),
        Paragraph(f"Con email: {escape(str(_field(user, 'email', '')))}", st["center"]),
    ]
    department = _field(user, "department")
    if department:
        elements.append(Paragraph(f"Departamento: {escape(department)}", st["center"]))
    elements += [
        Spacer(1, 0.5 * cm),
        Paragraph("Se encuentra afiliado/a a nuestra organización sindical desde:", st["body"]),
        Paragraph(format_date_es(_field(user, "membership_start_date")), st["highlight"]),
        Paragraph("Con estado de membresía:", st["body"]),
        Paragraph("ACTIVA" if status == "activo" else escape(status.upper()), st["highlight"]),
        Spacer(1, 0.5 * cm),
        Paragraph(f"Este certificado es válido como acreditación de afiliación a {ORG_NAME}.", st["body"]),
        Spacer(1, 0.6 * cm),
        *_signature(st),
    ]
    return _render(elements)


def generate_payment_receipt(user: Any, payment: dict[str, Any]) -> RenderedPdf:
    st = _styles()
    session_id = str(payment.get("stripeSessionId") or "N/A")[:20]
    amount = float(payment.get("amount") or 0)
    currency = str(payment.get("currency") or "eur").upper()
    paid = payment.get("status", "completed") == "completed"

    rows = [
        ["Concepto", escape(str(payment.get("description") or "Afiliación anual UGT-CLM-UGR"))],
        ["Fecha", format_date_es(payment.get("date"))],
        ["Estado", "PAGADO" if paid else escape(str(payment.get("status")))],
        ["Importe", f"{amount:.2f} {currency}"],
    ]
    table = Table(rows, colWidths=[4 * cm, 11 * cm])
    table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("TEXTCOLOR", (0, 0), (-1, -1), DARK_GRAY),
        ("TEXTCOLOR", (1, -1), (1, -1), UGT_RED),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("LINEBELOW", (0, -1), (-1, -1), 1, UGT_RED),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))

    elements = [
        Paragraph("RECIBO DE PAGO", st["title"]),
        Paragraph(ORG_NAME, st["org"]),
        Paragraph(f"Nº Recibo: {escape(session_id)}", st["right"]),
        Paragraph("DATOS DEL AFILIADO", st["section"]),
        Paragraph(f"Nombre: {escape(str(_field(user, 'name', '')))}", st["body"]),
        Paragraph(f"Email: {escape(str(_field(user, 'email', '')))}", st["body"]),
        Paragraph("DETALLE DEL PAGO", st["section"]),
        table,
        Spacer(1, 1 * cm),
        Paragraph("Este documento sirve como justificante de pago.", st["small"]),
        Paragraph("Pago procesado de forma segura a través de Stripe.", st["small"]),
    ]
    return _render(elements)


def generate_course_certificate(user: Any, course: dict[str, Any]) -> RenderedPdf:
    st = _styles()
    participant = course.get("participantName") or _field(user, "name", "")
    course_name = course.get("courseName") or course.get("courseType") or "Curso de Formación"
    duration = course.get("duration") or "20 horas"
    elements = [
        Paragraph("CERTIFICADO DE APROVECHAMIENTO", ParagraphStyle("UgtCourseTitle", parent=st["title"], fontSize=28)),
        Paragraph(ORG_NAME, st["org"]),
        Paragraph("Se certifica que", st["center"]),
        Spacer(1, 0.3 * cm),
        Paragraph(escape(str(participant)).upper(), ParagraphStyle("UgtParticipant", parent=st["highlight"], fontSize=22, leading=26)),
        Spacer(1, 0.3 * cm),
        Paragraph("ha completado satisfactoriamente el curso", st["center"]),
        Paragraph(f"«{escape(str(course_name))}»", st["highlight"]),
        Paragraph(
            f"con una duración de {escape(str(duration))}, finalizado el {format_date_es(course.get('completionDate'))}.",
            st["center"],
        ),
        Spacer(1, 1 * cm),
        *_signature(st),
    ]
    return _render(elements, pagesize=landscape(A4), border=True)


def generate_membership_form(user: Any) -> RenderedPdf:
    st = _styles()
    created = _field(user, "created_at")
    rows = [
        ["Nombre completo", escape(str(_field(user, "name", "")))],
        ["Email", escape(str(_field(user, "email", "")))],
        ["Teléfono", escape(str(_field(user, "phone") or "-"))],
        ["Departamento", escape(str(_field(user, "department") or "-"))],
        ["Estado de afiliación", escape(str(_field(user, "membership_status", "")).upper())],
        ["Fecha de alta", format_date_es(created)],
        ["Vencimiento", format_date_es(_field(user, "membership_expiry_date")) if _field(user, "membership_expiry_date") else "-"],
    ]
    table = Table(rows, colWidths=[5 * cm, 11 * cm])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#F5F5F5")),
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("TEXTCOLOR", (0, 0), (-1, -1), DARK_GRAY),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
    ]))
    elements = [
        Paragraph("FICHA DE AFILIACIÓN", st["title"]),
        Paragraph(ORG_NAME, st["org"]),
        Paragraph("DATOS PERSONALES", st["section"]),
        table,
        Spacer(1, 0.8 * cm),
        Paragraph(
            "Los datos personales recogidos se tratarán conforme al Reglamento General de Protección de Datos "
            "y se utilizarán exclusivamente para la gestión de la afiliación.",
            st["small"],
        ),
        Spacer(1, 0.8 * cm),
        *_signature(st),
    ]
    return _render(elements)
