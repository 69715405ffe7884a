"""
Auth helpers: JWT issuance and verification.
Access and refresh tokens are signed with separate keys and carry the same claims.
A bare token identifies a user; a scoped token also names one game and one role.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from jose import ExpiredSignatureError, JWTError, jwt

from taskhunt.config import LifecycleConfig
from taskhunt.engine.errors import Forbidden, Unauthorized
from taskhunt.engine.state import AccessCredentials, Role

ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    userid: str
    username: str
    game_id: str | None = None
    role: str | None = None

    def to_claims(self) -> dict[str, Any]:
        claims: dict[str, Any] = {"userid": self.userid, "username": self.username}
        if self.game_id is not None:
            claims["game_id"] = self.game_id
        if self.role is not None:
            claims["role"] = self.role
        return claims

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Identity":
        userid = claims.get("userid")
        username = claims.get("username")
        if not userid or not username:
            raise Unauthorized("Token is missing identity claims")
        game_id = claims.get("game_id")
        role = claims.get("role")
        return cls(
            userid=str(userid),
            username=str(username),
            game_id=str(game_id) if game_id is not None else None,
            role=str(role) if role is not None else None,
        )


def _sign(claims: dict[str, Any], key: str, lifetime: timedelta) -> str:
    payload = dict(claims)
    payload["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(payload, key, algorithm=ALGORITHM)


def _issue(identity: Identity, config: LifecycleConfig) -> AccessCredentials:
    claims = identity.to_claims()
    return AccessCredentials(
        access_token=_sign(claims, config.access_token_key, timedelta(minutes=config.access_token_expire_minutes)),
        refresh_token=_sign(claims, config.refresh_token_key, timedelta(hours=config.refresh_token_expire_hours)),
    )


def issue_credentials(userid: str, username: str, config: LifecycleConfig) -> AccessCredentials:
    """Bare credentials: identify the user, no game scope."""
    return _issue(Identity(userid=userid, username=username), config)


def upgrade_credentials(identity: Identity, game_id: str, role: Role | str, config: LifecycleConfig) -> AccessCredentials:
    """
    Upgrade user credentials to game-scoped credentials.
    Only userid/username are carried over; any game scope on the incoming identity is dropped.
    """
    scoped = Identity(
        userid=identity.userid,
        username=identity.username,
        game_id=str(game_id),
        role=Role(role).value,
    )
    return _issue(scoped, config)


def decode_identity(token: str | None, key: str) -> Identity:
    """Validate signature and expiry; raise Unauthorized if either fails."""
    if not token:
        raise Unauthorized("Not authenticated")
    try:
        claims = jwt.decode(token, key, algorithms=[ALGORITHM])
    except ExpiredSignatureError as exc:
        raise Unauthorized("Token has expired") from exc
    except JWTError as exc:
        raise Unauthorized("Invalid token") from exc
    return Identity.from_claims(claims)


def verify_token(token: str | None, game_id: str, allowed_roles: Iterable[Role | str], config: LifecycleConfig) -> Identity:
    """Decode an access token and require it to be scoped to game_id with one of allowed_roles."""
    identity = decode_identity(token, config.access_token_key)
    allowed = {Role(r).value for r in allowed_roles}
    if identity.game_id != str(game_id):
        raise Forbidden("Token is not scoped to this game", {"game_id": str(game_id)})
    if identity.role not in allowed:
        raise Forbidden("Role not permitted for this operation", {"role": identity.role, "allowed": sorted(allowed)})
    return identity


def refresh_credentials(refresh_token: str | None, config: LifecycleConfig) -> AccessCredentials:
    """Reissue an access/refresh pair from a valid refresh token, keeping its claims."""
    identity = decode_identity(refresh_token, config.refresh_token_key)
    return _issue(identity, config)


def sign_access_token(identity: Identity, lifetime: timedelta, config: LifecycleConfig) -> str:
    """Access token for an existing identity with a caller-chosen lifetime (used for scheduled re-entry)."""
    return _sign(identity.to_claims(), config.access_token_key, lifetime)
