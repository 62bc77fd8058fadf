"""Authentication and authorization for the MCP server.

Handles:
- Resolving the actor and tenant of an HTTP request from a bearer JWT
- Fail-closed permission checks used when exposing tools
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel

from catalog.base import Authorizer
from shared.logging import get_logger
from shared.models import Tool

logger = get_logger(__name__)

TENANT_HEADER = "x-tenant"


class AuthConfig(BaseModel):
    """Authentication configuration."""
    secret_key: Optional[str] = None
    algorithm: str = "HS256"
    token_expire_minutes: int = 60
    require_auth: bool = False


class RequestIdentity(BaseModel):
    """Actor and tenant a request acts as."""
    actor: Optional[dict[str, Any]] = None
    tenant: Optional[str] = None


class ActorResolver:
    """
    Resolves the actor of an MCP request.

    A valid `Authorization: Bearer <jwt>` header yields the token claims
    as the actor, with `sub` exposed as `id`. The tenant comes from the
    `tenant` claim, else from the `x-tenant` header. Without a token the
    request is anonymous unless authentication is required.
    """

    def __init__(self, config: Optional[AuthConfig] = None) -> None:
        self.config = config or AuthConfig()

    def create_token(self, claims: dict[str, Any]) -> str:
        """
        Create a JWT carrying the given claims.

        Args:
            claims: Claims to embed; `sub` identifies the actor

        Returns:
            JWT token string
        """
        if not self.config.secret_key:
            raise ValueError("A secret key is required to issue tokens")

        expire = datetime.now(timezone.utc) + timedelta(minutes=self.config.token_expire_minutes)
        payload = {**claims, "exp": expire}
        return jwt.encode(payload, self.config.secret_key, algorithm=self.config.algorithm)

    def verify_token(self, token: str) -> dict[str, Any]:
        """
        Verify and decode a JWT.

        Raises:
            HTTPException: If the token is invalid or expired
        """
        if not self.config.secret_key:
            logger.warning("Bearer token received but no secret key is configured")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token authentication is not configured",
                headers={"WWW-Authenticate": "Bearer"},
            )

        try:
            return jwt.decode(token, self.config.secret_key, algorithms=[self.config.algorithm])
        except JWTError as e:
            logger.warning("Token verification failed", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token",
                headers={"WWW-Authenticate": "Bearer"},
            )

    def resolve(self, request: Request) -> RequestIdentity:
        """Resolve the identity of a request, raising 401 when it is required but missing."""
        header_tenant = request.headers.get(TENANT_HEADER)
        authorization = request.headers.get("authorization", "")
        scheme, _, token = authorization.partition(" ")

        if scheme.lower() != "bearer" or not token:
            if self.config.require_auth:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required",
                    headers={"WWW-Authenticate": "Bearer"},
                )
            return RequestIdentity(tenant=header_tenant)

        claims = self.verify_token(token.strip())
        actor = {key: value for key, value in claims.items() if key != "exp"}
        if "sub" in actor:
            actor.setdefault("id", actor["sub"])

        return RequestIdentity(actor=actor, tenant=claims.get("tenant") or header_tenant)


def can_perform(authorizer: Authorizer, tool: Tool, actor: Any, tenant: Any = None) -> bool:
    """
    Check whether an actor may run a tool's action.

    Any exception raised by the authorizer denies access.

    Args:
        authorizer: Backend authorizer
        tool: Resolved tool
        actor: Acting user, or None
        tenant: Tenant, or None

    Returns:
        True if the tool may be exposed to the actor
    """
    action = tool.resolved_action
    if action is None:
        logger.error("Permission check on unresolved tool", tool=tool.name)
        return False

    try:
        allowed = bool(authorizer.can_perform(actor, tool.entity, action, tenant, tool.domain))
    except Exception as e:
        logger.error(
            "Error raised while checking permissions",
            tool=tool.name,
            entity=tool.entity,
            action=tool.action,
            error=str(e),
            exc_info=True,
        )
        return False

    if not allowed:
        logger.debug("Access denied", tool=tool.name, entity=tool.entity, action=tool.action)
    return allowed
