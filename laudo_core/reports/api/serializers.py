# laudo_core/reports/api/serializers.py
from __future__ import annotations

from rest_framework import serializers

from laudo_core.reports.models import DigitalCertificate, HistoryEntry, Report
from laudo_core.reports.services.public_access import is_active, validation_code


class ReportSerializer(serializers.ModelSerializer):
    exam_type_name = serializers.CharField(source="exam_type.name", read_only=True)
    patient_id = serializers.UUIDField(source="exam.patient_id", read_only=True)
    patient_name = serializers.CharField(source="exam.patient.full_name", read_only=True)
    has_original_file = serializers.SerializerMethodField()
    has_signed_file = serializers.SerializerMethodField()

    class Meta:
        model = Report
        fields = [
            "id",
            "tenant_id",
            "chain_id",
            "version",
            "is_current_version",
            "previous_version",
            "superseded_by",
            "status",
            "exam",
            "exam_type",
            "exam_type_name",
            "specialty",
            "patient_id",
            "patient_name",
            "conclusion",
            "responsible_doctor",
            "responsible_doctor_name",
            "has_original_file",
            "has_signed_file",
            "amount_paid",
            "payment_registered",
            "payment",
            "paid_at",
            "price_snapshot",
            "price_calculated_at",
            "signed_with",
            "signed_at",
            "certificate",
            "email_sent_at",
            "is_valid",
            "redo_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_has_original_file(self, obj) -> bool:
        return bool(obj.original_file_key)

    def get_has_signed_file(self, obj) -> bool:
        return bool(obj.signed_file_key)


class ReportCreateSerializer(serializers.Serializer):
    exam_id = serializers.UUIDField()
    conclusion = serializers.CharField(trim_whitespace=True)


class ReportRedoSerializer(serializers.Serializer):
    conclusion = serializers.CharField(trim_whitespace=True)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class CertificateSignSerializer(serializers.Serializer):
    credential = serializers.CharField(trim_whitespace=False)


class SignedUploadSerializer(serializers.Serializer):
    file = serializers.FileField()


class SendEmailSerializer(serializers.Serializer):
    recipient = serializers.EmailField(required=False, allow_blank=True)


class HistoryEntrySerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = HistoryEntry
        fields = [
            "id",
            "report",
            "sequence",
            "occurred_at",
            "user_id",
            "user_name",
            "action",
            "details",
            "version",
            "email_status",
            "error_message",
        ]
        read_only_fields = fields


class DigitalCertificateSerializer(serializers.ModelSerializer):
    is_expired = serializers.SerializerMethodField()

    class Meta:
        model = DigitalCertificate
        fields = [
            "id",
            "name",
            "issuer",
            "serial_number",
            "valid_from",
            "valid_until",
            "is_active",
            "is_expired",
            "last_used_at",
            "signature_count",
            "created_at",
        ]
        read_only_fields = fields

    def get_is_expired(self, obj) -> bool:
        return obj.is_expired()


class CertificateUploadSerializer(serializers.Serializer):
    file = serializers.FileField()
    password = serializers.CharField(trim_whitespace=False)
    name = serializers.CharField(required=False, allow_blank=True, default="")


class SignatureImageUploadSerializer(serializers.Serializer):
    file = serializers.FileField()


class SignatureImageInfoSerializer(serializers.Serializer):
    has_image = serializers.BooleanField()
    width = serializers.IntegerField(allow_null=True)
    height = serializers.IntegerField(allow_null=True)
    size_bytes = serializers.IntegerField(allow_null=True)


class AccessCodeSerializer(serializers.Serializer):
    access_code = serializers.CharField(max_length=32)


class PublicReportSummarySerializer(serializers.Serializer):
    """
    What anyone holding the link may see: no patient data and no conclusion.
    """
    id = serializers.UUIDField()
    validation_code = serializers.SerializerMethodField()
    version = serializers.IntegerField()
    status = serializers.SerializerMethodField()
    issued_at = serializers.DateTimeField(source="created_at")
    has_signed_file = serializers.SerializerMethodField()
    signed_with = serializers.CharField()
    signed_at = serializers.DateTimeField(allow_null=True)

    def get_validation_code(self, obj) -> str:
        return validation_code(obj)

    def get_status(self, obj) -> str:
        return "active" if is_active(obj) else "inactive"

    def get_has_signed_file(self, obj) -> bool:
        return bool(obj.signed_file_key)


class PublicReportSerializer(PublicReportSummarySerializer):
    """
    Released after the access code checks out.
    """
    patient_name = serializers.CharField(source="exam.patient.full_name")
    patient_birth_date = serializers.DateField(source="exam.patient.date_of_birth", allow_null=True)
    exam_type_name = serializers.CharField(source="exam_type.name")
    exam_date = serializers.DateTimeField(source="exam.exam_date", allow_null=True)
    conclusion = serializers.CharField()
    responsible_doctor_name = serializers.CharField()
