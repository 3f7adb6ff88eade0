"""
Principal Resolution Module

Validates bearer credentials (HMAC-signed JWTs) and turns their claims into an
immutable AuthenticatedPrincipal. The boundary wraps the principal in a
RequestContext that is passed explicitly to every lifecycle operation, so no
identity is ever held in ambient per-thread state.
"""

import base64
import binascii
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Any, Dict, Optional

import jwt

from .errors import Unauthenticated


class Role(Enum):
    """Principal roles carried in the token's role claim"""
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"

    @classmethod
    def from_claim(cls, value: Any) -> 'Role':
        if not isinstance(value, str):
            raise Unauthenticated("Token role claim is missing or malformed")
        try:
            return cls(value.upper())
        except ValueError:
            raise Unauthenticated(f"Unknown role in token: {value}")


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """Identity established for one request or event"""
    user_id: int
    role: Role
    username: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


SYSTEM_PRINCIPAL = AuthenticatedPrincipal(user_id=0, role=Role.ADMIN, username="SYSTEM")


@dataclass(frozen=True)
class RequestContext:
    """
    Everything a lifecycle operation needs to know about its caller.

    customer_id is resolved server-side from the verified identity and is the
    only customer identifier ever used for ownership decisions.
    """
    principal: AuthenticatedPrincipal
    customer_id: Optional[int] = None
    bearer_token: Optional[str] = None
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_admin(self) -> bool:
        return self.principal.is_admin

    @property
    def user_id(self) -> int:
        return self.principal.user_id

    def owns(self, customer_id: int) -> bool:
        """Check if the caller is the given customer"""
        return self.customer_id is not None and self.customer_id == customer_id

    @classmethod
    def system(cls, correlation_id: Optional[str] = None,
               bearer_token: Optional[str] = None) -> 'RequestContext':
        """
        Context for event-driven work that has no calling user.

        bearer_token is a service token minted for SYSTEM_PRINCIPAL and is
        forwarded to sibling services like a caller's token would be.
        """
        if correlation_id:
            return cls(principal=SYSTEM_PRINCIPAL, bearer_token=bearer_token,
                       correlation_id=correlation_id)
        return cls(principal=SYSTEM_PRINCIPAL, bearer_token=bearer_token)


class PrincipalResolver:
    """Verifies signed bearer tokens with a shared HMAC secret"""

    REQUIRED_CLAIMS = ("sub", "exp")

    def __init__(self, secret: str, algorithm: str = "HS256",
                 secret_is_base64: bool = False, leeway_seconds: int = 0):
        if secret_is_base64:
            try:
                self._key = base64.b64decode(secret, validate=True)
            except (binascii.Error, ValueError):
                raise ValueError("JWT secret is not valid base64")
        else:
            self._key = secret.encode("utf-8")
        self.algorithm = algorithm
        self.leeway = leeway_seconds

    def resolve(self, token: Optional[str]) -> AuthenticatedPrincipal:
        """
        Validate a bearer token and extract the principal.

        Args:
            token: Raw JWT, with or without a "Bearer " prefix

        Returns:
            AuthenticatedPrincipal built from the verified claims

        Raises:
            Unauthenticated: on any signature, expiry, structure or claim problem
        """
        if not token or not token.strip():
            raise Unauthenticated("Missing bearer credential")

        token = token.strip()
        if token.lower().startswith("bearer "):
            token = token[7:].strip()

        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[self.algorithm],
                leeway=self.leeway,
                options={"require": list(self.REQUIRED_CLAIMS)}
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Token expired")
        except jwt.InvalidTokenError as e:
            raise Unauthenticated(f"Invalid token: {e}")

        return self._principal_from_claims(claims)

    def _principal_from_claims(self, claims: Dict[str, Any]) -> AuthenticatedPrincipal:
        try:
            user_id = int(claims["sub"])
        except (TypeError, ValueError):
            raise Unauthenticated("Token subject is not a user identifier")

        role = Role.from_claim(claims.get("role"))

        username = claims.get("username")
        if not isinstance(username, str) or not username:
            raise Unauthenticated("Token username claim is missing")

        return AuthenticatedPrincipal(user_id=user_id, role=role, username=username)

    def issue(self, principal: AuthenticatedPrincipal,
              expires_in: timedelta = timedelta(hours=1)) -> str:
        """Sign a token for a principal with the shared key"""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(principal.user_id),
            "role": principal.role.value,
            "username": principal.username,
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(payload, self._key, algorithm=self.algorithm)
