import pytest
from httpx import ASGITransport, AsyncClient

from incoming_calls.config import Settings
from incoming_calls.main import create_app
from incoming_calls.schemas.calls import DirectoryEntry

API_TOKEN = "test-api-token"


class FakeDirectory:
    """In-memory stand-in for the people directory."""

    def __init__(self) -> None:
        self.entries: dict[str, DirectoryEntry] = {}
        self.error: Exception | None = None
        self.calls: list[set[str]] = []

    async def lookup_names(self, phones):
        requested = set(phones)
        self.calls.append(requested)
        if self.error is not None:
            raise self.error
        return {phone: entry for phone, entry in self.entries.items() if phone in requested}

    async def ping(self):
        return self.error is None


# 1. Settings isolated from the developer's .env
@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        environment="test",
        pbx_webhook_secret="",
        api_token=API_TOKEN,
        database_url="",
        heartbeat_interval_seconds=0.05,
    )


@pytest.fixture
def directory():
    return FakeDirectory()


# 2. Fresh app (and call feed state) per test
@pytest.fixture
def app(settings, directory):
    return create_app(settings, directory=directory)


@pytest.fixture
def feed(app):
    return app.state.call_feed


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {API_TOKEN}"}


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.call_feed.shutdown()
