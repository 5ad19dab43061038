# laudo_core/api/urls.py
from __future__ import annotations

from django.urls import path
from rest_framework.routers import DefaultRouter

from laudo_core.audit.api.views import AuditEventViewSet
from laudo_core.finance.api.views import DoctorReportViewSet, PaymentViewSet, PriceConfigurationViewSet
from laudo_core.iam.api.auth import LoginView, LogoutView, RefreshView
from laudo_core.iam.api.me import MeView
from laudo_core.reports.api.views import (
    DigitalCertificateViewSet,
    PhysicalSignatureImageView,
    PhysicalSignatureView,
    PublicReportAuthView,
    PublicReportDownloadView,
    PublicReportView,
    ReportViewSet,
)

router = DefaultRouter()

router.register(r"reports", ReportViewSet, basename="reports")
router.register(r"certificates", DigitalCertificateViewSet, basename="certificates")
router.register(r"finance/payments", PaymentViewSet, basename="finance-payments")
router.register(r"finance/reports", DoctorReportViewSet, basename="finance-reports")
router.register(r"finance/prices", PriceConfigurationViewSet, basename="finance-prices")
router.register(r"audit/events", AuditEventViewSet, basename="audit-events")

urlpatterns = [
    path("auth/login/", LoginView.as_view(), name="login"),
    path("auth/refresh/", RefreshView.as_view(), name="refresh"),
    path("auth/logout/", LogoutView.as_view(), name="logout"),
    path("me/", MeView.as_view(), name="me"),

    path("signatures/physical/", PhysicalSignatureView.as_view(), name="physical-signature"),
    path("signatures/physical/image/", PhysicalSignatureImageView.as_view(), name="physical-signature-image"),

    # anonymous, reached from the link e-mailed with the report
    path("public/reports/<uuid:report_id>/", PublicReportView.as_view(), name="public-report"),
    path("public/reports/<uuid:report_id>/auth/", PublicReportAuthView.as_view(), name="public-report-auth"),
    path("public/reports/<uuid:report_id>/download/", PublicReportDownloadView.as_view(), name="public-report-download"),

    # Router URLs last (so explicit paths win if ever overlapping)
    *router.urls,
]
