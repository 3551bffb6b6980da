"""Tests for server.py — token refresh wiring."""

import pytest

from readlater_sync.errors import AuthUnavailableError
from readlater_sync.server import make_token_refresher


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    monkeypatch.setenv("READLATER_API_URL", "https://api.example.com")
    monkeypatch.setenv("READLATER_API_TOKEN", "old-token")


@pytest.mark.asyncio
async def test_unchanged_token_is_unavailable():
    refresh = make_token_refresher("old-token")
    with pytest.raises(AuthUnavailableError):
        await refresh()


@pytest.mark.asyncio
async def test_new_token_picked_up_once(monkeypatch):
    refresh = make_token_refresher("old-token")
    monkeypatch.setenv("READLATER_API_TOKEN", "new-token")

    assert await refresh() == "new-token"
    with pytest.raises(AuthUnavailableError):
        await refresh()


@pytest.mark.asyncio
async def test_missing_credentials_are_unavailable(monkeypatch):
    monkeypatch.delenv("READLATER_API_TOKEN")
    refresh = make_token_refresher("old-token")
    with pytest.raises(AuthUnavailableError):
        await refresh()
