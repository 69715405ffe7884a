from datetime import timedelta

import pytest
from jose import jwt

from taskhunt.api.auth import (
    ALGORITHM,
    Identity,
    decode_identity,
    issue_credentials,
    refresh_credentials,
    sign_access_token,
    upgrade_credentials,
    verify_token,
)
from taskhunt.engine.errors import Forbidden, Unauthorized
from taskhunt.engine.state import Role


def test_upgrade_preserves_identity_and_scopes_to_game(config):
    identity = Identity(userid="u1", username="alice")
    creds = upgrade_credentials(identity, "game-1", Role.PLAYER, config)

    access = decode_identity(creds.access_token, config.access_token_key)
    refresh = decode_identity(creds.refresh_token, config.refresh_token_key)
    for decoded in (access, refresh):
        assert decoded.userid == "u1"
        assert decoded.username == "alice"
        assert decoded.game_id == "game-1"
        assert decoded.role == "player"


def test_upgrade_drops_scope_from_previous_game(config):
    scoped = Identity(userid="u1", username="alice", game_id="old-game", role="host")
    creds = upgrade_credentials(scoped, "new-game", "admin", config)

    decoded = decode_identity(creds.access_token, config.access_token_key)
    assert decoded.game_id == "new-game"
    assert decoded.role == "admin"


def test_access_and_refresh_use_different_keys(config):
    creds = issue_credentials("u1", "alice", config)
    with pytest.raises(Unauthorized):
        decode_identity(creds.access_token, config.refresh_token_key)
    with pytest.raises(Unauthorized):
        decode_identity(creds.refresh_token, config.access_token_key)


def test_refresh_token_outlives_access_token(config):
    creds = issue_credentials("u1", "alice", config)
    access_exp = jwt.get_unverified_claims(creds.access_token)["exp"]
    refresh_exp = jwt.get_unverified_claims(creds.refresh_token)["exp"]
    assert refresh_exp - access_exp >= 2 * 60 * 60


def test_verify_token_accepts_matching_game_and_role(config):
    creds = upgrade_credentials(Identity("u1", "alice"), "game-1", Role.HOST, config)
    identity = verify_token(creds.access_token, "game-1", [Role.HOST, Role.ADMIN], config)
    assert identity.username == "alice"


def test_verify_token_rejects_other_game(config):
    creds = upgrade_credentials(Identity("u1", "alice"), "game-1", Role.HOST, config)
    with pytest.raises(Forbidden):
        verify_token(creds.access_token, "game-2", [Role.HOST], config)


def test_verify_token_rejects_role_outside_allowed(config):
    creds = upgrade_credentials(Identity("u1", "alice"), "game-1", Role.PLAYER, config)
    with pytest.raises(Forbidden) as exc:
        verify_token(creds.access_token, "game-1", [Role.HOST, Role.ADMIN], config)
    assert exc.value.details["role"] == "player"


def test_verify_token_rejects_bare_token(config):
    creds = issue_credentials("u1", "alice", config)
    with pytest.raises(Forbidden):
        verify_token(creds.access_token, "game-1", [Role.PLAYER], config)


def test_expired_token_is_unauthorized(config):
    token = sign_access_token(Identity("u1", "alice", "game-1", "host"), timedelta(seconds=-5), config)
    with pytest.raises(Unauthorized) as exc:
        verify_token(token, "game-1", [Role.HOST], config)
    assert "expired" in exc.value.message


def test_garbage_and_missing_tokens_are_unauthorized(config):
    with pytest.raises(Unauthorized):
        decode_identity("not-a-jwt", config.access_token_key)
    with pytest.raises(Unauthorized):
        decode_identity(None, config.access_token_key)


def test_token_without_identity_claims_is_unauthorized(config):
    token = jwt.encode({"game_id": "game-1"}, config.access_token_key, algorithm=ALGORITHM)
    with pytest.raises(Unauthorized):
        decode_identity(token, config.access_token_key)


def test_refresh_reissues_same_scope(config):
    creds = upgrade_credentials(Identity("u1", "alice"), "game-1", Role.ADMIN, config)
    fresh = refresh_credentials(creds.refresh_token, config)
    decoded = verify_token(fresh.access_token, "game-1", [Role.ADMIN], config)
    assert decoded.userid == "u1"


def test_refresh_rejects_access_token(config):
    creds = issue_credentials("u1", "alice", config)
    with pytest.raises(Unauthorized):
        refresh_credentials(creds.access_token, config)
