"""
Tests for principal resolution and request contexts
"""

import base64
from datetime import datetime, timezone, timedelta

import jwt
import pytest

from account_service.errors import Unauthenticated
from account_service.principal import (
    AuthenticatedPrincipal, PrincipalResolver, RequestContext, Role, SYSTEM_PRINCIPAL
)


TEST_SECRET = "principal-test-secret-that-is-32-bytes-plus"


def _token(claims, secret=TEST_SECRET):
    return jwt.encode(claims, secret, algorithm="HS256")


def _claims(**overrides):
    now = datetime.now(timezone.utc)
    claims = {
        "sub": "7",
        "role": "CUSTOMER",
        "username": "alice",
        "iat": now,
        "exp": now + timedelta(minutes=5),
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


class TestPrincipalResolver:
    """Test bearer token validation"""

    @pytest.fixture
    def resolver(self):
        return PrincipalResolver(TEST_SECRET)

    def test_resolve_valid_token(self, resolver):
        principal = resolver.resolve(_token(_claims()))

        assert principal == AuthenticatedPrincipal(user_id=7, role=Role.CUSTOMER, username="alice")
        assert principal.is_admin is False

    def test_resolve_strips_bearer_prefix(self, resolver):
        principal = resolver.resolve("Bearer " + _token(_claims(role="ADMIN")))
        assert principal.role == Role.ADMIN
        assert principal.is_admin

    def test_role_claim_is_case_insensitive(self, resolver):
        assert resolver.resolve(_token(_claims(role="admin"))).role == Role.ADMIN

    def test_issue_round_trips(self, resolver):
        principal = AuthenticatedPrincipal(user_id=42, role=Role.ADMIN, username="ops")
        assert resolver.resolve(resolver.issue(principal)) == principal

    def test_expired_token_rejected(self, resolver):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        with pytest.raises(Unauthenticated, match="expired"):
            resolver.resolve(_token(_claims(exp=past)))

    def test_forged_signature_rejected(self, resolver):
        forged = _token(_claims(role="ADMIN"), secret="another-secret-that-is-also-32-bytes-long")
        with pytest.raises(Unauthenticated):
            resolver.resolve(forged)

    def test_malformed_token_rejected(self, resolver):
        with pytest.raises(Unauthenticated):
            resolver.resolve("not-a-jwt")

    @pytest.mark.parametrize("token", [None, "", "   "])
    def test_missing_token_rejected(self, resolver, token):
        with pytest.raises(Unauthenticated):
            resolver.resolve(token)

    def test_missing_expiry_rejected(self, resolver):
        claims = _claims()
        del claims["exp"]
        with pytest.raises(Unauthenticated):
            resolver.resolve(_token(claims))

    @pytest.mark.parametrize("claim", ["sub", "role", "username"])
    def test_missing_required_claims_rejected(self, resolver, claim):
        claims = _claims()
        del claims[claim]
        with pytest.raises(Unauthenticated):
            resolver.resolve(_token(claims))

    def test_non_numeric_subject_rejected(self, resolver):
        with pytest.raises(Unauthenticated, match="subject"):
            resolver.resolve(_token(_claims(sub="alice")))

    def test_unknown_role_rejected(self, resolver):
        with pytest.raises(Unauthenticated, match="role"):
            resolver.resolve(_token(_claims(role="SUPERUSER")))

    def test_base64_secret(self):
        raw = b"0123456789abcdef0123456789abcdef"
        resolver = PrincipalResolver(base64.b64encode(raw).decode(), secret_is_base64=True)
        token = jwt.encode(_claims(), raw, algorithm="HS256")

        assert resolver.resolve(token).user_id == 7

    def test_invalid_base64_secret(self):
        with pytest.raises(ValueError):
            PrincipalResolver("not base64 !!", secret_is_base64=True)


class TestRequestContext:
    """Test explicit request context"""

    def test_owns_only_resolved_customer(self):
        principal = AuthenticatedPrincipal(user_id=7, role=Role.CUSTOMER, username="alice")
        ctx = RequestContext(principal=principal, customer_id=7)

        assert ctx.owns(7)
        assert not ctx.owns(8)

    def test_context_without_customer_owns_nothing(self):
        principal = AuthenticatedPrincipal(user_id=7, role=Role.CUSTOMER, username="alice")
        assert not RequestContext(principal=principal).owns(7)

    def test_contexts_are_immutable(self):
        principal = AuthenticatedPrincipal(user_id=7, role=Role.CUSTOMER, username="alice")
        ctx = RequestContext(principal=principal, customer_id=7)
        with pytest.raises(AttributeError):
            ctx.customer_id = 8

    def test_each_context_gets_a_correlation_id(self):
        first = RequestContext.system()
        second = RequestContext.system()
        assert first.correlation_id != second.correlation_id

    def test_system_context(self):
        ctx = RequestContext.system(correlation_id="evt-1")
        assert ctx.principal == SYSTEM_PRINCIPAL
        assert ctx.is_admin
        assert ctx.correlation_id == "evt-1"
        assert ctx.bearer_token is None

    def test_system_context_carries_service_token(self, resolver):
        token = resolver.issue(SYSTEM_PRINCIPAL)
        ctx = RequestContext.system(bearer_token=token)

        assert ctx.bearer_token == token
        assert resolver.resolve(ctx.bearer_token) == SYSTEM_PRINCIPAL
