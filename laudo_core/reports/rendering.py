# laudo_core/reports/rendering.py
"""
PDF rendering for reports and payment receipts (reportlab platypus).
"""
from __future__ import annotations

import io
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from xml.sax.saxutils import escape

import structlog
from django.conf import settings
from django.utils.module_loading import import_string
from reportlab.lib import colors
from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Flowable, Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from laudo_core.common.api.exceptions import ExternalServiceError

log = structlog.get_logger(__name__)

PRIMARY = HexColor("#1E40AF")
MUTED = HexColor("#6B7280")
BORDER = HexColor("#E5E7EB")


@dataclass(frozen=True)
class SignatureBlock:
    kind: str  # "digital" | "physical"
    signer_name: str
    signed_at: datetime
    crm: str = ""
    certificate_name: str = ""
    certificate_issuer: str = ""
    certificate_serial: str = ""
    image: Optional[bytes] = None


@dataclass(frozen=True)
class ReportDocument:
    report_id: str
    version: int
    tenant_name: str
    patient_name: str
    exam_type: str
    exam_date: Optional[datetime]
    doctor_name: str
    doctor_crm: str
    conclusion: str
    access_code: str = ""
    public_url: str = ""
    signature: Optional[SignatureBlock] = None


@dataclass(frozen=True)
class ReceiptLine:
    report_id: str
    patient_name: str
    exam_type: str
    amount: Decimal


@dataclass(frozen=True)
class ReceiptDocument:
    payment_id: str
    tenant_name: str
    doctor_name: str
    method: str
    paid_at: datetime
    total_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    lines: List[ReceiptLine] = field(default_factory=list)
    notes: str = ""


def _brl(value: Decimal) -> str:
    return f"R$ {Decimal(value):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")


class ReportLabRenderer:
    service_name = "pdf"

    def __init__(self):
        base = getSampleStyleSheet()
        self.styles = {
            "title": ParagraphStyle("LaudoTitle", parent=base["Title"], textColor=PRIMARY, fontSize=16),
            "heading": ParagraphStyle("LaudoHeading", parent=base["Heading3"], textColor=PRIMARY, spaceBefore=10),
            "body": ParagraphStyle("LaudoBody", parent=base["BodyText"], leading=14),
            "muted": ParagraphStyle("LaudoMuted", parent=base["BodyText"], textColor=MUTED, fontSize=8),
            "center": ParagraphStyle("LaudoCenter", parent=base["BodyText"], alignment=TA_CENTER),
        }

    def render_report(self, doc: ReportDocument) -> bytes:
        try:
            return self._build(
                title=f"Laudo de {doc.exam_type}",
                story=self._report_story(doc),
            )
        except ExternalServiceError:
            raise
        except Exception as exc:
            log.error("pdf.render_failed", report_id=doc.report_id, error=str(exc))
            raise ExternalServiceError(self.service_name, "Could not render the report PDF.") from exc

    def render_receipt(self, receipt: ReceiptDocument) -> bytes:
        try:
            return self._build(title="Recibo de pagamento", story=self._receipt_story(receipt))
        except Exception as exc:
            log.error("pdf.receipt_failed", payment_id=receipt.payment_id, error=str(exc))
            raise ExternalServiceError(self.service_name, "Could not render the receipt PDF.") from exc

    def _build(self, *, title: str, story: List[Flowable]) -> bytes:
        buffer = io.BytesIO()
        pdf = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=2 * cm,
            rightMargin=2 * cm,
            topMargin=1.5 * cm,
            bottomMargin=1.5 * cm,
            title=title,
            author="Laudofy",
        )
        pdf.build(story)
        return buffer.getvalue()

    def _p(self, text: str, style: str = "body") -> Paragraph:
        return Paragraph(escape(text or "").replace("\n", "<br/>"), self.styles[style])

    def _report_story(self, doc: ReportDocument) -> List[Flowable]:
        s = self.styles
        exam_date = doc.exam_date.strftime("%d/%m/%Y") if doc.exam_date else "-"

        info = Table(
            [
                ["Paciente", doc.patient_name],
                ["Exame", doc.exam_type],
                ["Data do exame", exam_date],
                ["Médico responsável", f"{doc.doctor_name} {('CRM ' + doc.doctor_crm) if doc.doctor_crm else ''}".strip()],
                ["Versão", str(doc.version)],
            ],
            colWidths=[4.5 * cm, 12 * cm],
        )
        info.setStyle(
            TableStyle(
                [
                    ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                    ("LINEBELOW", (0, 0), (-1, -1), 0.25, BORDER),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ]
            )
        )

        story: List[Flowable] = [
            Paragraph(escape(doc.tenant_name), s["center"]),
            Paragraph(f"Laudo de {escape(doc.exam_type)}", s["title"]),
            info,
            Spacer(1, 0.6 * cm),
            Paragraph("Conclusão", s["heading"]),
            self._p(doc.conclusion),
            Spacer(1, 1 * cm),
        ]
        story.extend(self._signature_story(doc))

        footer = []
        if doc.public_url:
            footer.append(f"Verificação: {doc.public_url}")
        if doc.access_code:
            footer.append(f"Código de acesso: {doc.access_code}")
        if footer:
            story.extend([Spacer(1, 0.6 * cm), self._p("  |  ".join(footer), "muted")])
        return story

    def _signature_story(self, doc: ReportDocument) -> List[Flowable]:
        sig = doc.signature
        if sig is None:
            return [self._p("Documento aguardando assinatura.", "muted")]

        story: List[Flowable] = []
        if sig.kind == "physical" and sig.image:
            story.append(Image(io.BytesIO(sig.image), width=5 * cm, height=2 * cm, kind="proportional"))

        lines = [sig.signer_name]
        if sig.crm:
            lines.append(f"CRM {sig.crm}")
        if sig.kind == "digital":
            lines.append(f"Assinado digitalmente em {sig.signed_at:%d/%m/%Y %H:%M}")
            if sig.certificate_name:
                lines.append(f"Certificado: {sig.certificate_name}")
            if sig.certificate_issuer:
                lines.append(f"Emissor: {sig.certificate_issuer}")
            if sig.certificate_serial:
                lines.append(f"Série: {sig.certificate_serial}")
        else:
            lines.append(f"Assinado em {sig.signed_at:%d/%m/%Y %H:%M}")

        box = Table([[self._p("\n".join(lines), "center")]], colWidths=[9 * cm])
        box.setStyle(
            TableStyle(
                [
                    ("BOX", (0, 0), (-1, -1), 0.75, PRIMARY),
                    ("BACKGROUND", (0, 0), (-1, -1), colors.white),
                ]
            )
        )
        story.append(box)
        return story

    def _receipt_story(self, receipt: ReceiptDocument) -> List[Flowable]:
        s = self.styles
        rows = [["Laudo", "Paciente", "Exame", "Valor"]]
        for line in receipt.lines:
            rows.append([line.report_id[:8], line.patient_name, line.exam_type, _brl(line.amount)])

        table = Table(rows, colWidths=[2.5 * cm, 6.5 * cm, 4.5 * cm, 3 * cm], repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("LINEBELOW", (0, 0), (-1, 0), 0.75, PRIMARY),
                    ("LINEBELOW", (0, 1), (-1, -1), 0.25, BORDER),
                    ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
                ]
            )
        )

        story: List[Flowable] = [
            Paragraph(escape(receipt.tenant_name), s["center"]),
            Paragraph("Recibo de pagamento de laudos", s["title"]),
            self._p(f"Médico: {receipt.doctor_name}"),
            self._p(f"Data: {receipt.paid_at:%d/%m/%Y}  |  Meio: {receipt.method}"),
            Spacer(1, 0.5 * cm),
            table,
            Spacer(1, 0.5 * cm),
            self._p(f"Valor total: {_brl(receipt.total_amount)}"),
            self._p(f"Desconto: {_brl(receipt.discount_amount)}"),
            self._p(f"Valor final: {_brl(receipt.final_amount)}"),
        ]
        if receipt.notes:
            story.extend([Spacer(1, 0.4 * cm), self._p(receipt.notes, "muted")])
        story.append(self._p(f"Pagamento {receipt.payment_id}", "muted"))
        return story


def get_pdf_renderer() -> ReportLabRenderer:
    return import_string(settings.LAUDO_PDF_RENDERER)()
