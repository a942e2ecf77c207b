# tests/test_policy.py - Tests de la table d'autorisation et des jetons

import pytest
from datetime import timedelta
from types import SimpleNamespace

from core.errors import AuthenticationError, AuthorizationError
from core.policy import OTHER, OWNER, VENDOR, authorize, is_allowed, relationship
from core.security import Principal, create_access_token, decode_token, get_current_principal

CUSTOMER = Principal(id="c1", role="customer")
VENDOR_USER = Principal(id="v1", role="vendor")
ADMIN = Principal(id="a1", role="admin")
DOCUMENT = SimpleNamespace(customer_id="c1", vendor_id="v1")


class TestRelationship:

    def test_owner_vendor_other(self):
        assert relationship(CUSTOMER, DOCUMENT) == OWNER
        assert relationship(VENDOR_USER, DOCUMENT) == VENDOR
        assert relationship(Principal(id="x", role="customer"), DOCUMENT) == OTHER


class TestPolicyTable:

    @pytest.mark.parametrize("operation", [
        "quotation.submit", "quotation.convert", "quotation.delete", "order.cancel", "invoice.view",
    ])
    def test_owner_customer_allowed(self, operation):
        assert is_allowed(CUSTOMER, operation, DOCUMENT)

    @pytest.mark.parametrize("operation", [
        "quotation.approve", "quotation.reject", "order.update_status", "invoice.add_payment",
    ])
    def test_owner_customer_denied_vendor_operations(self, operation):
        assert not is_allowed(CUSTOMER, operation, DOCUMENT)

    @pytest.mark.parametrize("operation", [
        "quotation.approve", "quotation.counter_offer", "order.update_status", "invoice.create",
    ])
    def test_assigned_vendor_allowed(self, operation):
        assert is_allowed(VENDOR_USER, operation, DOCUMENT)

    def test_vendor_cannot_act_for_customer(self):
        assert not is_allowed(VENDOR_USER, "quotation.submit", DOCUMENT)
        assert not is_allowed(VENDOR_USER, "order.cancel", DOCUMENT)

    def test_unrelated_actor_denied(self):
        stranger = Principal(id="v2", role="vendor")
        assert not is_allowed(stranger, "quotation.view", DOCUMENT)
        with pytest.raises(AuthorizationError) as exc:
            authorize(stranger, "quotation.approve", DOCUMENT)
        assert "quotation" in exc.value.message

    def test_admin_allowed_everywhere(self):
        assert is_allowed(ADMIN, "order.cancel", DOCUMENT)
        assert is_allowed(ADMIN, "quotation.approve", DOCUMENT)
        assert is_allowed(ADMIN, "order.reconcile_mirrors")

    def test_creation_roles(self):
        assert is_allowed(CUSTOMER, "quotation.create")
        assert not is_allowed(VENDOR_USER, "quotation.create")
        assert is_allowed(VENDOR_USER, "sale_order.create")
        assert not is_allowed(CUSTOMER, "order.reconcile_mirrors")


class TestTokens:

    def test_round_trip(self):
        token = create_access_token("user-42", "vendor")
        payload = decode_token(token)
        assert payload["sub"] == "user-42"
        assert payload["role"] == "vendor"

    def test_invalid_token(self):
        with pytest.raises(AuthenticationError):
            decode_token("not-a-jwt")

    def test_expired_token(self):
        token = create_access_token("user-42", "customer", expires_delta=timedelta(minutes=-5))
        with pytest.raises(AuthenticationError):
            decode_token(token)

    @pytest.mark.asyncio
    async def test_unknown_role_rejected(self):
        from fastapi.security import HTTPAuthorizationCredentials

        credentials = HTTPAuthorizationCredentials(
            scheme="Bearer", credentials=create_access_token("user-42", "superuser")
        )
        with pytest.raises(AuthenticationError):
            await get_current_principal(credentials)

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(AuthenticationError):
            await get_current_principal(None)
