import json
import runpy
import sys
from pathlib import Path

import pytest

from taskhunt.api.auth import decode_identity

SCRIPTS = Path(__file__).resolve().parent.parent / "scripts"


def _run(monkeypatch, name, *argv):
    monkeypatch.setattr(sys, "argv", [name, *argv])
    runpy.run_path(str(SCRIPTS / name), run_name="__main__")


def test_issue_token_prints_bare_credentials(monkeypatch, capsys):
    monkeypatch.setenv("ACCESS_TOKEN_KEY", "script-access-key")
    monkeypatch.setenv("REFRESH_TOKEN_KEY", "script-refresh-key")

    _run(monkeypatch, "issue_token.py", "hannah", "--userid", "u-42")

    out = json.loads(capsys.readouterr().out)
    identity = decode_identity(out["access_token"], "script-access-key")
    assert identity.userid == "u-42"
    assert identity.username == "hannah"
    assert identity.game_id is None and identity.role is None
    assert decode_identity(out["refresh_token"], "script-refresh-key").username == "hannah"


def test_issue_token_rejects_blank_username(monkeypatch, capsys):
    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, "issue_token.py", "  ")
    assert exc.value.code == 1
    assert "provide a username" in capsys.readouterr().err
