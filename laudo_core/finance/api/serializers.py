# laudo_core/finance/api/serializers.py
from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from laudo_core.finance.models import Payment, PaymentMethod, PaymentStatus, PriceConfiguration
from laudo_core.reports.models import Report


class PaymentSerializer(serializers.ModelSerializer):
    doctor_id = serializers.IntegerField(read_only=True)
    registered_by_id = serializers.IntegerField(read_only=True)
    report_ids = serializers.SerializerMethodField()

    class Meta:
        model = Payment
        fields = [
            "id",
            "tenant_id",
            "doctor_id",
            "report_ids",
            "total_amount",
            "discount_amount",
            "discount_percent",
            "final_amount",
            "status",
            "method",
            "notes",
            "receipt_reference",
            "paid_at",
            "registered_by_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_report_ids(self, obj) -> list[str]:
        return [str(r.id) for r in obj.reports.all()]


class PaymentCreateSerializer(serializers.Serializer):
    doctor_id = serializers.IntegerField()
    report_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    discount_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    discount_percent = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True)
    final_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    method = serializers.ChoiceField(choices=PaymentMethod.choices)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    receipt_reference = serializers.CharField(required=False, allow_blank=True, default="")
    paid_at = serializers.DateTimeField(required=False, allow_null=True)


class PaymentUpdateSerializer(serializers.Serializer):
    discount_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    discount_percent = serializers.DecimalField(max_digits=5, decimal_places=2, required=False)
    final_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=PaymentStatus.choices, required=False)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentStatsSerializer(serializers.Serializer):
    count = serializers.IntegerField()
    paid = serializers.IntegerField()
    pending = serializers.IntegerField()
    cancelled = serializers.IntegerField()
    total_final_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_discount_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    average_ticket = serializers.DecimalField(max_digits=14, decimal_places=2)


class ReceiptLineSerializer(serializers.Serializer):
    report_id = serializers.CharField()
    patient_name = serializers.CharField()
    exam_type = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)


class ReceiptSerializer(serializers.Serializer):
    payment_id = serializers.CharField()
    tenant_name = serializers.CharField()
    doctor_name = serializers.CharField()
    method = serializers.CharField()
    paid_at = serializers.DateTimeField()
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    discount_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    final_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    lines = ReceiptLineSerializer(many=True)
    notes = serializers.CharField(allow_blank=True)


class DoctorReportSerializer(serializers.ModelSerializer):
    patient_name = serializers.CharField(source="exam.patient.full_name", read_only=True)
    exam_type_name = serializers.CharField(source="exam_type.name", read_only=True)

    class Meta:
        model = Report
        fields = [
            "id",
            "version",
            "status",
            "exam",
            "exam_type_name",
            "patient_name",
            "responsible_doctor",
            "responsible_doctor_name",
            "signed_at",
            "price_snapshot",
            "amount_paid",
            "payment_registered",
            "payment",
            "paid_at",
        ]
        read_only_fields = fields


class PriceConfigurationSerializer(serializers.ModelSerializer):
    doctor_id = serializers.IntegerField()
    specialty_id = serializers.UUIDField()
    exam_type_id = serializers.UUIDField()
    specialty_name = serializers.CharField(source="specialty.name", read_only=True)
    exam_type_name = serializers.CharField(source="exam_type.name", read_only=True)

    class Meta:
        model = PriceConfiguration
        fields = [
            "id",
            "tenant_id",
            "doctor_id",
            "specialty_id",
            "specialty_name",
            "exam_type_id",
            "exam_type_name",
            "amount",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "tenant_id", "specialty_name", "exam_type_name", "created_at", "updated_at"]


class PriceConfigurationUpdateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=Decimal("0.00"))
    notes = serializers.CharField(required=False, allow_blank=True)
