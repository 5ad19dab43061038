# laudo_core/reports/api/views.py
from __future__ import annotations

from django.http import HttpResponse
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from laudo_core.audit.services import request_meta
from laudo_core.common.api.pagination import paginate
from laudo_core.common.api.params import bool_or_none, date_or_none, uuid_or_none
from laudo_core.common.permissions import CertificatePermission, PhysicalSignaturePermission, ReportPermission
from laudo_core.iam.context import resolve_auth_context
from laudo_core.reports.api.serializers import (
    AccessCodeSerializer,
    CertificateSignSerializer,
    CertificateUploadSerializer,
    DigitalCertificateSerializer,
    HistoryEntrySerializer,
    PublicReportSerializer,
    PublicReportSummarySerializer,
    ReasonSerializer,
    ReportCreateSerializer,
    ReportRedoSerializer,
    ReportSerializer,
    SendEmailSerializer,
    SignatureImageInfoSerializer,
    SignatureImageUploadSerializer,
    SignedUploadSerializer,
)
from laudo_core.reports.models import DigitalCertificate, Report
from laudo_core.reports.selectors import get_report, reports_filtered
from laudo_core.reports.services.certificates import CertificateService
from laudo_core.reports.services.delivery import ReportDeliveryService
from laudo_core.reports.services.history import history_for_report
from laudo_core.reports.services.lifecycle import ReportLifecycleService
from laudo_core.reports.services.physical_signature import PhysicalSignatureService
from laudo_core.reports.services.public_access import PublicReportService, get_public_report
from laudo_core.reports.services.signing import SigningService
from laudo_core.reports.storage import get_object_storage

DOWNLOAD_KINDS = {
    "original": ("original_file_key", "application/pdf", "pdf"),
    "signed": ("signed_file_key", "application/pdf", "pdf"),
    "signature": ("signature_file_key", "application/pkcs7-signature", "p7s"),
}
DOWNLOAD_KIND_NAMES = sorted(DOWNLOAD_KINDS)


class ReportViewSet(viewsets.GenericViewSet):
    """
    Reports (laudos):
    - list/retrieve
    - create, redo
    - sign (certificate | physical image | manual upload)
    - history, invalidate, cancel, send_email, download
    """
    permission_classes = [ReportPermission]
    serializer_class = ReportSerializer
    queryset = Report.objects.none()

    def _report_response(self, request, report, http_status=status.HTTP_200_OK) -> Response:
        ctx = resolve_auth_context(request)
        fresh = get_report(tenant_id=ctx.tenant_id, report_id=report.id)
        return Response(ReportSerializer(fresh).data, status=http_status)

    @extend_schema(
        tags=["Reports"],
        responses={200: ReportSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="exam", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="patient", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="doctor", type=OpenApiTypes.INT, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="chain", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False,
                             description="All versions of one report chain, oldest first."),
            OpenApiParameter(name="include_invalid", type=OpenApiTypes.BOOL, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="created_from", type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="created_to", type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        ctx = resolve_auth_context(request)
        doctor = request.query_params.get("doctor")

        qs = reports_filtered(
            tenant_id=ctx.tenant_id,
            status=request.query_params.get("status"),
            exam_id=uuid_or_none(request.query_params.get("exam"), "exam"),
            patient_id=uuid_or_none(request.query_params.get("patient"), "patient"),
            doctor_id=int(doctor) if doctor and doctor.isdigit() else None,
            chain_id=uuid_or_none(request.query_params.get("chain"), "chain"),
            include_invalid=bool(bool_or_none(request.query_params.get("include_invalid"), "include_invalid")),
            created_from=date_or_none(request.query_params.get("created_from"), "created_from"),
            created_to=date_or_none(request.query_params.get("created_to"), "created_to"),
        )
        return paginate(request, qs, ReportSerializer)

    @extend_schema(tags=["Reports"], responses={200: ReportSerializer})
    def retrieve(self, request, pk=None):
        ctx = resolve_auth_context(request)
        report = get_report(tenant_id=ctx.tenant_id, report_id=uuid_or_none(pk, "id"))
        return Response(ReportSerializer(report).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Reports"], request=ReportCreateSerializer, responses={201: ReportSerializer})
    def create(self, request):
        ctx = resolve_auth_context(request)

        ser = ReportCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        report = ReportLifecycleService.create(
            ctx=ctx,
            exam_id=ser.validated_data["exam_id"],
            conclusion=ser.validated_data["conclusion"],
            meta=request_meta(request),
        )
        return self._report_response(request, report, status.HTTP_201_CREATED)

    @extend_schema(tags=["Reports"], request=ReportRedoSerializer, responses={201: ReportSerializer})
    @action(detail=True, methods=["post"], url_path="redo")
    def redo(self, request, pk=None):
        ctx = resolve_auth_context(request)

        ser = ReportRedoSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        report = ReportLifecycleService.redo(
            ctx=ctx,
            report_id=uuid_or_none(pk, "id"),
            conclusion=ser.validated_data["conclusion"],
            reason=ser.validated_data.get("reason") or "",
            meta=request_meta(request),
        )
        return self._report_response(request, report, status.HTTP_201_CREATED)

    @extend_schema(tags=["Reports"], request=CertificateSignSerializer, responses={200: ReportSerializer})
    @action(detail=True, methods=["post"], url_path="sign/certificate")
    def sign_certificate(self, request, pk=None):
        ctx = resolve_auth_context(request)

        ser = CertificateSignSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        report = SigningService.sign_with_certificate(
            ctx=ctx,
            report_id=uuid_or_none(pk, "id"),
            credential=ser.validated_data["credential"],
            meta=request_meta(request),
        )
        return self._report_response(request, report)

    @extend_schema(tags=["Reports"], request=None, responses={200: ReportSerializer})
    @action(detail=True, methods=["post"], url_path="sign/physical")
    def sign_physical(self, request, pk=None):
        ctx = resolve_auth_context(request)
        report = SigningService.sign_with_physical_image(
            ctx=ctx,
            report_id=uuid_or_none(pk, "id"),
            meta=request_meta(request),
        )
        return self._report_response(request, report)

    @extend_schema(tags=["Reports"], request=SignedUploadSerializer, responses={200: ReportSerializer})
    @action(
        detail=True,
        methods=["post"],
        url_path="sign/upload",
        parser_classes=[MultiPartParser, FormParser],
    )
    def sign_upload(self, request, pk=None):
        ctx = resolve_auth_context(request)

        ser = SignedUploadSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        upload = ser.validated_data["file"]

        report = SigningService.upload_signed_file(
            ctx=ctx,
            report_id=uuid_or_none(pk, "id"),
            file_bytes=upload.read(),
            filename=upload.name,
            meta=request_meta(request),
        )
        return self._report_response(request, report)

    @extend_schema(tags=["Reports"], responses={200: HistoryEntrySerializer(many=True)})
    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request, pk=None):
        ctx = resolve_auth_context(request)
        entries = history_for_report(tenant_id=ctx.tenant_id, report_id=uuid_or_none(pk, "id"))
        return Response(HistoryEntrySerializer(entries, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Reports"], request=ReasonSerializer, responses={200: ReportSerializer})
    @action(detail=True, methods=["post"], url_path="invalidate")
    def invalidate(self, request, pk=None):
        ctx = resolve_auth_context(request)

        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        report = ReportLifecycleService.invalidate(
            ctx=ctx,
            report_id=uuid_or_none(pk, "id"),
            reason=ser.validated_data.get("reason") or "",
            meta=request_meta(request),
        )
        return self._report_response(request, report)

    @extend_schema(tags=["Reports"], request=ReasonSerializer, responses={200: ReportSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        ctx = resolve_auth_context(request)

        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        report = ReportLifecycleService.cancel(
            ctx=ctx,
            report_id=uuid_or_none(pk, "id"),
            reason=ser.validated_data.get("reason") or "",
            meta=request_meta(request),
        )
        return self._report_response(request, report)

    @extend_schema(tags=["Reports"], request=SendEmailSerializer, responses={200: ReportSerializer})
    @action(detail=True, methods=["post"], url_path="send_email")
    def send_email(self, request, pk=None):
        ctx = resolve_auth_context(request)

        ser = SendEmailSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        report = ReportDeliveryService.send_email(
            ctx=ctx,
            report_id=uuid_or_none(pk, "id"),
            recipient=ser.validated_data.get("recipient") or None,
            meta=request_meta(request),
        )
        return self._report_response(request, report)

    @extend_schema(
        tags=["Reports"],
        responses={(200, "application/pdf"): OpenApiTypes.BINARY},
        parameters=[
            OpenApiParameter(name="kind", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False,
                             enum=DOWNLOAD_KIND_NAMES, description="original (default), signed or signature."),
        ],
    )
    @action(detail=True, methods=["get"], url_path="download")
    def download(self, request, pk=None):
        ctx = resolve_auth_context(request)
        report = get_report(tenant_id=ctx.tenant_id, report_id=uuid_or_none(pk, "id"))

        kind = request.query_params.get("kind") or "original"
        if kind not in DOWNLOAD_KINDS:
            raise ValidationError({"kind": f"Must be one of: {', '.join(DOWNLOAD_KINDS)}."})

        attr, content_type, ext = DOWNLOAD_KINDS[kind]
        key = getattr(report, attr)
        if not key:
            raise NotFound(f"This report has no {kind} file.")

        data = get_object_storage().get_object(key)
        resp = HttpResponse(data, content_type=content_type)
        resp["Content-Disposition"] = f'attachment; filename="laudo_{report.id}_v{report.version}_{kind}.{ext}"'
        return resp


class DigitalCertificateViewSet(viewsets.GenericViewSet):
    """
    The acting doctor's signing certificates.
    """
    permission_classes = [CertificatePermission]
    serializer_class = DigitalCertificateSerializer
    queryset = DigitalCertificate.objects.none()
    parser_classes = [MultiPartParser, FormParser, JSONParser]

    @extend_schema(tags=["Certificates"], responses={200: DigitalCertificateSerializer(many=True)})
    def list(self, request):
        ctx = resolve_auth_context(request)
        qs = DigitalCertificate.objects.filter(doctor_id=ctx.user_id).order_by("-created_at")
        return paginate(request, qs, DigitalCertificateSerializer)

    @extend_schema(tags=["Certificates"], request=CertificateUploadSerializer, responses={201: DigitalCertificateSerializer})
    def create(self, request):
        ctx = resolve_auth_context(request)

        ser = CertificateUploadSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        cert = CertificateService.register(
            ctx=ctx,
            bundle=ser.validated_data["file"].read(),
            password=ser.validated_data["password"],
            name=ser.validated_data.get("name") or "",
            meta=request_meta(request),
        )
        return Response(DigitalCertificateSerializer(cert).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Certificates"], request=None, responses={200: DigitalCertificateSerializer})
    @action(detail=True, methods=["post"], url_path="deactivate")
    def deactivate(self, request, pk=None):
        ctx = resolve_auth_context(request)
        cert = CertificateService.deactivate(ctx=ctx, certificate_id=uuid_or_none(pk, "id"), meta=request_meta(request))
        return Response(DigitalCertificateSerializer(cert).data, status=status.HTTP_200_OK)


class PhysicalSignatureView(APIView):
    """
    The acting doctor's signature image: GET info, POST (multipart PNG) to upload
    or replace, DELETE to remove.
    """
    permission_classes = [PhysicalSignaturePermission]
    parser_classes = [MultiPartParser, FormParser]

    @extend_schema(tags=["Signatures"], responses={200: SignatureImageInfoSerializer})
    def get(self, request):
        info = PhysicalSignatureService.info(ctx=resolve_auth_context(request))
        return Response(SignatureImageInfoSerializer(info).data)

    @extend_schema(tags=["Signatures"], request=SignatureImageUploadSerializer, responses={201: SignatureImageInfoSerializer})
    def post(self, request):
        ser = SignatureImageUploadSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        info = PhysicalSignatureService.upload(
            ctx=resolve_auth_context(request),
            image=ser.validated_data["file"].read(),
            meta=request_meta(request),
        )
        return Response(SignatureImageInfoSerializer(info).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Signatures"], request=None, responses={204: None})
    def delete(self, request):
        PhysicalSignatureService.remove(ctx=resolve_auth_context(request), meta=request_meta(request))
        return Response(status=status.HTTP_204_NO_CONTENT)


class PhysicalSignatureImageView(APIView):
    permission_classes = [PhysicalSignaturePermission]

    @extend_schema(tags=["Signatures"], responses={(200, "image/png"): OpenApiTypes.BINARY})
    def get(self, request):
        data = PhysicalSignatureService.image(ctx=resolve_auth_context(request))
        return HttpResponse(data, content_type="image/png")


class PublicReportBaseView(APIView):
    """
    Report reachable from the link e-mailed to the patient. Anyone may see the
    summary; the full content and the signed PDF need the access code.
    """
    permission_classes = [AllowAny]
    authentication_classes: list = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "public_report"


class PublicReportView(PublicReportBaseView):
    @extend_schema(tags=["Public"], responses={200: PublicReportSummarySerializer})
    def get(self, request, report_id):
        report = get_public_report(report_id)
        return Response(PublicReportSummarySerializer(report).data)


class PublicReportAuthView(PublicReportBaseView):
    @extend_schema(tags=["Public"], request=AccessCodeSerializer, responses={200: PublicReportSerializer})
    def post(self, request, report_id):
        ser = AccessCodeSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        report = PublicReportService.authenticate(
            report_id=report_id,
            access_code=ser.validated_data["access_code"],
            meta=request_meta(request),
        )
        return Response(PublicReportSerializer(report).data)


class PublicReportDownloadView(PublicReportBaseView):
    @extend_schema(tags=["Public"], request=AccessCodeSerializer, responses={(200, "application/pdf"): OpenApiTypes.BINARY})
    def post(self, request, report_id):
        ser = AccessCodeSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        report, data = PublicReportService.signed_pdf(
            report_id=report_id,
            access_code=ser.validated_data["access_code"],
            meta=request_meta(request),
        )
        resp = HttpResponse(data, content_type="application/pdf")
        resp["Content-Disposition"] = f'inline; filename="laudo_{report.id}.pdf"'
        return resp
