from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from broadcast_dialer.api import deps


def test_operator_auth_accepts_configured_token():
    credentials = SimpleNamespace(scheme="Bearer", credentials="test-token")
    assert deps.get_operator_auth(credentials) is True


@pytest.mark.parametrize("credentials", [None, SimpleNamespace(scheme="Bearer", credentials="wrong")])
def test_operator_auth_rejects_missing_or_wrong_token(credentials):
    with pytest.raises(HTTPException) as exc:
        deps.get_operator_auth(credentials)
    assert exc.value.status_code == 401


def test_webhook_token_is_enforced_when_configured(monkeypatch):
    monkeypatch.setattr(deps.settings, "webhook_token", "s3cret")
    assert deps.verify_webhook_token("s3cret") is True
    with pytest.raises(HTTPException) as exc:
        deps.verify_webhook_token("guess")
    assert exc.value.status_code == 403


def test_webhooks_open_without_configured_token(monkeypatch):
    monkeypatch.setattr(deps.settings, "webhook_token", "")
    assert deps.verify_webhook_token("") is True
