import pytest

from app.models import ChannelCredential, Tenant
from app.services.errors import UnresolvedTenantError
from app.services.tenant_service import get_connected_credential, mark_credential_error, resolve_tenant


class TestResolveTenant:
    def test_by_phone_number_id(self, db, tenant, credential):
        resolved = resolve_tenant(db, "1099887766")

        assert resolved.tenant_id == tenant.id
        assert resolved.via_fallback is False

    def test_by_business_account_id(self, db, tenant, credential):
        assert resolve_tenant(db, "waba-1").tenant_id == tenant.id

    def test_unknown_channel(self, db, credential):
        with pytest.raises(UnresolvedTenantError):
            resolve_tenant(db, "unknown", allow_fallback=False)

    def test_disconnected_credential_ignored(self, db, credential):
        mark_credential_error(db, credential, "expired")
        db.commit()

        with pytest.raises(UnresolvedTenantError):
            resolve_tenant(db, "1099887766")

    def test_single_tenant_fallback(self, db, tenant, credential):
        resolved = resolve_tenant(db, "unknown", allow_fallback=True)

        assert resolved.tenant_id == tenant.id
        assert resolved.via_fallback is True

    def test_no_fallback_with_several_tenants(self, db, credential):
        other = Tenant(name="Outra Clínica")
        db.add(other)
        db.flush()
        db.add(
            ChannelCredential(
                tenant_id=other.id, channel_type="whatsapp_meta", phone_number_id="2", access_token="t", status="connected"
            )
        )
        db.commit()

        with pytest.raises(UnresolvedTenantError):
            resolve_tenant(db, "unknown", allow_fallback=True)


class TestConnectedCredential:
    def test_prefers_meta_channel(self, db, tenant, credential):
        db.add(
            ChannelCredential(
                tenant_id=tenant.id, channel_type="whatsapp_simple", phone_number_id="3", access_token="t", status="connected"
            )
        )
        db.commit()

        assert get_connected_credential(db, tenant.id).channel_type == "whatsapp_meta"

    def test_none_when_in_error(self, db, tenant, credential):
        mark_credential_error(db, credential, "expired")
        assert get_connected_credential(db, tenant.id) is None
        assert credential.error_message == "expired"
