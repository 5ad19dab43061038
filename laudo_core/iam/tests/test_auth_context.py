import pytest
from rest_framework.exceptions import PermissionDenied, ValidationError

from laudo_core.iam import roles as caps
from laudo_core.iam.context import AuthContext, build_auth_context
from laudo_core.iam.roles import Role, normalize_roles
from laudo_core.tests.helpers import make_user

pytestmark = pytest.mark.django_db


def test_single_tenant_user_resolves_without_header(doctor, tenant):
    ctx = build_auth_context(doctor, None)

    assert ctx.tenant_id == tenant.id
    assert ctx.tenant_ids == (tenant.id,)
    assert ctx.roles == frozenset({"medico"})
    assert ctx.user_name == "Dra. Ana Souza"


def test_multi_tenant_user_must_pick_a_tenant(tenant, other_tenant):
    user = make_user("multi", tenants=[tenant, other_tenant], roles=[Role.MEDICO])

    with pytest.raises(ValidationError):
        build_auth_context(user, None)

    assert build_auth_context(user, other_tenant.id).tenant_id == other_tenant.id


def test_non_member_is_denied(doctor, other_tenant):
    with pytest.raises(PermissionDenied):
        build_auth_context(doctor, other_tenant.id)


def test_admin_master_may_act_in_any_tenant(tenant, other_tenant):
    user = make_user("master", tenants=[tenant], is_admin_master=True)

    ctx = build_auth_context(user, other_tenant.id)

    assert ctx.is_admin_master
    assert ctx.is_admin
    assert ctx.capabilities == caps.ALL_CAPABILITIES


def test_doctor_capabilities(doctor_ctx):
    assert doctor_ctx.can(caps.REPORT_CREATE)
    assert doctor_ctx.can(caps.REPORT_SIGN)
    assert not doctor_ctx.can(caps.FINANCE_MANAGE)
    assert not doctor_ctx.is_admin

    with pytest.raises(PermissionDenied):
        doctor_ctx.require(caps.AUDIT_VIEW)


def test_financial_access_flag_grants_finance_capabilities(tenant):
    user = make_user("dra.fin", tenants=[tenant], roles=[Role.MEDICO], has_financial_access=True)

    ctx = build_auth_context(user, tenant.id)

    assert ctx.can(caps.FINANCE_MANAGE)
    assert ctx.can(caps.PRICE_MANAGE)


def test_unknown_role_tags_are_ignored():
    assert normalize_roles(["medico", "faxineiro"]) == frozenset({"medico"})
    assert normalize_roles("admin") == frozenset({"admin"})
    assert normalize_roles(None) == frozenset()


def test_context_is_built_from_role_set_only(tenant):
    ctx = AuthContext(user_id=1, tenant_id=tenant.id, roles=frozenset({"recepcionista"}))

    assert ctx.capabilities == frozenset({caps.REPORT_VIEW, caps.REPORT_SEND_EMAIL})
    assert ctx.has_role(Role.RECEPCIONISTA)
    assert not ctx.has_role(Role.MEDICO)


def test_user_without_profile_is_denied(django_user_model, tenant):
    user = django_user_model.objects.create_user(username="no-profile", password="x")

    with pytest.raises(PermissionDenied):
        build_auth_context(user, tenant.id)
