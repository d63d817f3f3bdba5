"""
Shared fixtures: a file-backed SQLite database for the durable token cache
and a mock KIS upstream built on ``httpx.MockTransport``.

SQLite is file-backed (not ``:memory:``) so that concurrent sessions get
separate connections and SQLite's own write locking decides claim races.
"""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from kisprice.db.base import Base
from kisprice.db.models import KISTokenCacheRow  # noqa: F401


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "kis_tokens.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture
def async_engine(db_path):
    return create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, expire_on_commit=False)


class MockKIS:
    """Scriptable stand-in for the KIS token and quote endpoints.

    ``prices`` maps six-digit symbol → ``httpx.Response`` factory or price
    string. Unknown symbols answer HTTP 500.
    """

    def __init__(self) -> None:
        self.token_calls: list[httpx.Request] = []
        self.quote_calls: list[httpx.Request] = []
        self.token_response: Callable[[], httpx.Response] = lambda: httpx.Response(
            200,
            json={
                "access_token": "T1",
                "token_type": "Bearer",
                "access_token_token_expired": "2099-01-01 00:00:00",
            },
        )
        self.prices: dict[str, str | Callable[[], httpx.Response]] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2/tokenP":
            self.token_calls.append(request)
            return self.token_response()

        self.quote_calls.append(request)
        symbol = request.url.params.get("FID_INPUT_ISCD", "")
        entry = self.prices.get(symbol)
        if entry is None:
            return httpx.Response(500, text="internal error")
        if callable(entry):
            return entry()
        return httpx.Response(200, json={"rt_cd": "0", "output": {"stck_prpr": entry}})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def mock_kis():
    return MockKIS()
