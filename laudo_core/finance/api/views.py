# laudo_core/finance/api/views.py
from __future__ import annotations

from dataclasses import asdict

from django.http import HttpResponse
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from laudo_core.audit.models import AuditAction
from laudo_core.audit.services import AuditService, request_meta
from laudo_core.common.api.pagination import paginate
from laudo_core.common.api.params import bool_or_none, date_or_none, uuid_or_none
from laudo_core.common.permissions import PaymentPermission, PricePermission
from laudo_core.finance.api.serializers import (
    DoctorReportSerializer,
    PaymentCancelSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    PaymentStatsSerializer,
    PaymentUpdateSerializer,
    PriceConfigurationSerializer,
    PriceConfigurationUpdateSerializer,
    ReceiptSerializer,
)
from laudo_core.finance.models import Payment, PriceConfiguration
from laudo_core.finance.selectors import (
    doctor_reports,
    payment_stats,
    payments_filtered,
    price_configurations_filtered,
    receipt_for_payment,
)
from laudo_core.finance.services import PaymentService, PriceService
from laudo_core.iam.context import resolve_auth_context
from laudo_core.reports.models import Report
from laudo_core.reports.rendering import get_pdf_renderer


def _int_or_none(value: str | None) -> int | None:
    return int(value) if value and value.isdigit() else None


PERIOD_PARAMS = [
    OpenApiParameter(name="doctor", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False),
    OpenApiParameter(name="date_from", type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, required=False),
    OpenApiParameter(name="date_to", type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, required=False),
]


class PaymentViewSet(viewsets.GenericViewSet):
    """
    Doctor payments:
    - list/retrieve, stats, receipt
    - create (batch registration)
    - partial_update
    - cancel
    """
    permission_classes = [PaymentPermission]
    serializer_class = PaymentSerializer
    queryset = Payment.objects.none()

    @extend_schema(
        tags=["Finance"],
        responses={200: PaymentSerializer(many=True)},
        parameters=[
            *PERIOD_PARAMS,
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="method", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        ctx = resolve_auth_context(request)
        qs = payments_filtered(
            tenant_id=ctx.tenant_id,
            doctor_id=_int_or_none(request.query_params.get("doctor")),
            status=request.query_params.get("status"),
            method=request.query_params.get("method"),
            date_from=date_or_none(request.query_params.get("date_from"), "date_from"),
            date_to=date_or_none(request.query_params.get("date_to"), "date_to"),
        )
        return paginate(request, qs, PaymentSerializer)

    @extend_schema(tags=["Finance"], responses={200: PaymentSerializer})
    def retrieve(self, request, pk=None):
        ctx = resolve_auth_context(request)
        payment = payments_filtered(tenant_id=ctx.tenant_id).get(id=uuid_or_none(pk, "id"))
        return Response(PaymentSerializer(payment).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Finance"], request=PaymentCreateSerializer, responses={201: PaymentSerializer})
    def create(self, request):
        ctx = resolve_auth_context(request)

        ser = PaymentCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        payment = PaymentService.register(
            ctx=ctx,
            doctor_id=data["doctor_id"],
            report_ids=data["report_ids"],
            total_amount=data["total_amount"],
            discount_amount=data.get("discount_amount"),
            discount_percent=data.get("discount_percent"),
            final_amount=data.get("final_amount"),
            method=data["method"],
            notes=data.get("notes") or "",
            receipt_reference=data.get("receipt_reference") or "",
            paid_at=data.get("paid_at"),
            meta=request_meta(request),
        )
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Finance"], request=PaymentUpdateSerializer, responses={200: PaymentSerializer})
    def partial_update(self, request, pk=None):
        ctx = resolve_auth_context(request)

        ser = PaymentUpdateSerializer(data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        payment = PaymentService.update(
            ctx=ctx,
            payment_id=uuid_or_none(pk, "id"),
            discount_amount=data.get("discount_amount"),
            discount_percent=data.get("discount_percent"),
            final_amount=data.get("final_amount"),
            method=data.get("method"),
            notes=data.get("notes"),
            status=data.get("status"),
            reason=data.get("reason") or "",
            meta=request_meta(request),
        )
        return Response(PaymentSerializer(payment).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Finance"], request=PaymentCancelSerializer, responses={200: PaymentSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        ctx = resolve_auth_context(request)

        ser = PaymentCancelSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        payment = PaymentService.cancel(
            ctx=ctx,
            payment_id=uuid_or_none(pk, "id"),
            reason=ser.validated_data.get("reason") or "",
            meta=request_meta(request),
        )
        return Response(PaymentSerializer(payment).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Finance"], responses={200: PaymentStatsSerializer}, parameters=PERIOD_PARAMS)
    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        ctx = resolve_auth_context(request)
        data = payment_stats(
            tenant_id=ctx.tenant_id,
            doctor_id=_int_or_none(request.query_params.get("doctor")),
            date_from=date_or_none(request.query_params.get("date_from"), "date_from"),
            date_to=date_or_none(request.query_params.get("date_to"), "date_to"),
        )
        return Response(PaymentStatsSerializer(data).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Finance"],
        responses={200: ReceiptSerializer, (200, "application/pdf"): OpenApiTypes.BINARY},
        parameters=[
            OpenApiParameter(name="pdf", type=OpenApiTypes.BOOL, location=OpenApiParameter.QUERY, required=False,
                             description="Return the rendered receipt PDF instead of JSON."),
            OpenApiParameter(name="audit", type=OpenApiTypes.BOOL, location=OpenApiParameter.QUERY, required=False,
                             description="Record the receipt generation in the audit trail."),
        ],
    )
    @action(detail=True, methods=["get"], url_path="receipt")
    def receipt(self, request, pk=None):
        ctx = resolve_auth_context(request)
        payment = payments_filtered(tenant_id=ctx.tenant_id).get(id=uuid_or_none(pk, "id"))
        receipt = receipt_for_payment(payment)

        if bool_or_none(request.query_params.get("audit"), "audit"):
            AuditService.record(
                actor_user_id=ctx.user_id,
                action=AuditAction.EXPORT,
                collection="payments",
                document_id=payment.id,
                description="Recibo de pagamento gerado",
                meta=request_meta(request),
                tenant_id=payment.tenant_id,
            )

        if bool_or_none(request.query_params.get("pdf"), "pdf"):
            pdf = get_pdf_renderer().render_receipt(receipt)
            resp = HttpResponse(pdf, content_type="application/pdf")
            resp["Content-Disposition"] = f'attachment; filename="recibo_{payment.id}.pdf"'
            return resp

        return Response(ReceiptSerializer(asdict(receipt)).data, status=status.HTTP_200_OK)


class DoctorReportViewSet(viewsets.GenericViewSet):
    """
    Current, valid reports with their payment situation (read-only).
    """
    permission_classes = [PaymentPermission]
    serializer_class = DoctorReportSerializer
    queryset = Report.objects.none()

    @extend_schema(
        tags=["Finance"],
        responses={200: DoctorReportSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="doctor", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="paid", type=OpenApiTypes.BOOL, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="signed_from", type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="signed_to", type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        ctx = resolve_auth_context(request)
        qs = doctor_reports(
            tenant_id=ctx.tenant_id,
            doctor_id=_int_or_none(request.query_params.get("doctor")),
            paid=bool_or_none(request.query_params.get("paid"), "paid"),
            signed_from=date_or_none(request.query_params.get("signed_from"), "signed_from"),
            signed_to=date_or_none(request.query_params.get("signed_to"), "signed_to"),
        )
        return paginate(request, qs, DoctorReportSerializer)


class PriceConfigurationViewSet(viewsets.GenericViewSet):
    """
    Report prices per (doctor, specialty, exam type).
    """
    permission_classes = [PricePermission]
    serializer_class = PriceConfigurationSerializer
    queryset = PriceConfiguration.objects.none()

    @extend_schema(
        tags=["Finance"],
        responses={200: PriceConfigurationSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="doctor", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="specialty", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="exam_type", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        ctx = resolve_auth_context(request)
        qs = price_configurations_filtered(
            tenant_id=ctx.tenant_id,
            doctor_id=_int_or_none(request.query_params.get("doctor")),
            specialty_id=uuid_or_none(request.query_params.get("specialty"), "specialty"),
            exam_type_id=uuid_or_none(request.query_params.get("exam_type"), "exam_type"),
        )
        return paginate(request, qs, PriceConfigurationSerializer)

    @extend_schema(tags=["Finance"], responses={200: PriceConfigurationSerializer})
    def retrieve(self, request, pk=None):
        ctx = resolve_auth_context(request)
        cfg = price_configurations_filtered(tenant_id=ctx.tenant_id).get(id=uuid_or_none(pk, "id"))
        return Response(PriceConfigurationSerializer(cfg).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Finance"], request=PriceConfigurationSerializer, responses={201: PriceConfigurationSerializer})
    def create(self, request):
        ctx = resolve_auth_context(request)

        ser = PriceConfigurationSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        cfg = PriceService.create(
            ctx=ctx,
            doctor_id=data["doctor_id"],
            specialty_id=data["specialty_id"],
            exam_type_id=data["exam_type_id"],
            amount=data["amount"],
            notes=data.get("notes") or "",
            meta=request_meta(request),
        )
        return Response(PriceConfigurationSerializer(cfg).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Finance"], request=PriceConfigurationUpdateSerializer, responses={200: PriceConfigurationSerializer})
    def partial_update(self, request, pk=None):
        ctx = resolve_auth_context(request)

        ser = PriceConfigurationUpdateSerializer(data=request.data, partial=True)
        ser.is_valid(raise_exception=True)

        cfg = PriceService.update(
            ctx=ctx,
            price_id=uuid_or_none(pk, "id"),
            amount=ser.validated_data.get("amount"),
            notes=ser.validated_data.get("notes"),
            meta=request_meta(request),
        )
        return Response(PriceConfigurationSerializer(cfg).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Finance"], request=PriceConfigurationUpdateSerializer, responses={200: PriceConfigurationSerializer})
    def update(self, request, pk=None):
        return self.partial_update(request, pk=pk)

    @extend_schema(tags=["Finance"], responses={204: None})
    def destroy(self, request, pk=None):
        ctx = resolve_auth_context(request)
        PriceService.delete(ctx=ctx, price_id=uuid_or_none(pk, "id"), meta=request_meta(request))
        return Response(status=status.HTTP_204_NO_CONTENT)
