from typing import Optional

import base58
import pytest
from fastapi.testclient import TestClient
from nacl.signing import SigningKey

from rimind.config import Settings
from rimind.core.deps import build_container
from rimind.core.errors import AssistantError
from rimind.database import init_db
from rimind.main import create_app
from rimind.utilities.message import build_message


class Wallet:
    """Client-side Ed25519 keypair with a base-58 address."""

    def __init__(self):
        self.key = SigningKey.generate()

    @property
    def address(self) -> str:
        return base58.b58encode(bytes(self.key.verify_key)).decode()

    def sign(self, message: str) -> str:
        return base58.b58encode(self.key.sign(message.encode("utf-8")).signature).decode()


class FakeAssistant:
    """Streams canned chunks; optionally raises before chunk `fail_at`."""

    def __init__(self, chunks=("Hello", " there", "! "), fail_at: Optional[int] = None):
        self.chunks = list(chunks)
        self.fail_at = fail_at
        self.calls = []

    async def stream_reply(self, history, message):
        self.calls.append((history, message))
        for index, chunk in enumerate(self.chunks):
            if self.fail_at is not None and index == self.fail_at:
                raise AssistantError()
            yield chunk
        if self.fail_at is not None and self.fail_at >= len(self.chunks):
            raise AssistantError()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values = {
            "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
            "JWT_SECRET_KEY": "test-secret",
            "OPENAI_API_KEY": None,
            "ENVIRONMENT": "test",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def assistant():
    return FakeAssistant()


@pytest.fixture
def app(settings, assistant):
    return create_app(settings, assistant=assistant)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def container(settings, assistant):
    container = build_container(settings, assistant=assistant)
    await init_db(container.engine)
    yield container
    await container.engine.dispose()


@pytest.fixture
def wallet():
    return Wallet()


def signed_login_payload(client: TestClient, wallet: Wallet) -> dict:
    challenge = client.get("/challenge").json()
    message = build_message({
        "nonce": challenge["nonce"],
        "address": wallet.address,
        "expiresAt": challenge["expiresAt"],
    })
    return {
        "address": wallet.address,
        "message": message,
        "nonce": challenge["nonce"],
        "signature": wallet.sign(message),
    }


def login(client: TestClient, wallet: Wallet):
    response = client.post("/login", json=signed_login_payload(client, wallet))
    assert response.status_code == 200, response.text
    return response
