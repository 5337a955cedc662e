import os
import tempfile
from types import SimpleNamespace

_DB_DIR = tempfile.mkdtemp(prefix="commerce-hooks-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["OPENAI_API_KEY"] = ""

import httpx  # noqa: E402
import pytest  # noqa: E402

from commerce_hooks.integrations import whatsapp  # noqa: E402
from commerce_hooks.main import app  # noqa: E402
from commerce_hooks.middleware.rate_limit import limiter  # noqa: E402
from commerce_hooks.models.database import Base, async_session, engine  # noqa: E402
from commerce_hooks.models.entities import (  # noqa: E402
    Organization,
    PaymentGatewayConfig,
    SystemSetting,
    User,
    WhatsAppInstance,
)
from commerce_hooks.services import agent_service, notification_service  # noqa: E402
from commerce_hooks.services.auth_service import create_access_token, hash_password  # noqa: E402
from commerce_hooks.services.encryption_service import encrypt  # noqa: E402


@pytest.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    limiter.reset()
    yield
    await engine.dispose()


@pytest.fixture
async def db():
    async with async_session() as session:
        yield session


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def fetch(model, ident):
    """Load a row through a fresh session so request-side writes are visible."""
    async with async_session() as session:
        return await session.get(model, ident)


async def fetch_all(statement):
    async with async_session() as session:
        result = await session.execute(statement)
        return result.scalars().all()


@pytest.fixture
async def org(db):
    organization = Organization(slug="acme", name="Acme Store")
    db.add(organization)
    await db.commit()
    return organization


@pytest.fixture
async def epayco_config(db, org):
    config = PaymentGatewayConfig(
        organization_id=org.id,
        provider="epayco",
        public_key="pub-epayco",
        private_key_encrypted=encrypt("priv-epayco"),
        integrity_secret_encrypted=encrypt("cust-123"),
        encryption_key_encrypted=encrypt("pkey-456"),
    )
    db.add(config)
    await db.commit()
    return config


@pytest.fixture
async def wompi_config(db, org):
    config = PaymentGatewayConfig(
        organization_id=org.id,
        provider="wompi",
        public_key="pub_test_wompi",
        private_key_encrypted=encrypt("prv_test_wompi"),
        integrity_secret_encrypted=encrypt("test_integrity_secret"),
    )
    db.add(config)
    await db.commit()
    return config


@pytest.fixture
async def evolution_settings(db):
    db.add(SystemSetting(
        key="evolution_api_config",
        value={"url": "https://evolution.test", "apiKey": "evo-key"},
    ))
    await db.commit()


@pytest.fixture
async def meta_settings(db):
    db.add(SystemSetting(
        key="meta_whatsapp_config",
        value={"app_id": "app-1", "app_secret": "meta-app-secret", "verify_token": "verify-me"},
    ))
    await db.commit()


@pytest.fixture
async def corporate_instance(db, org):
    instance = WhatsAppInstance(
        organization_id=org.id,
        instance_name="acme-corp",
        instance_type="corporate",
        provider="evolution",
        status="connected",
        phone_number="573000000001",
    )
    db.add(instance)
    await db.commit()
    return instance


@pytest.fixture
async def meta_instance(db, org):
    instance = WhatsAppInstance(
        organization_id=org.id,
        instance_name="acme-meta",
        instance_type="corporate",
        provider="meta",
        status="connected",
        meta_phone_number_id="PNID-1",
        meta_access_token="meta-token",
    )
    db.add(instance)
    await db.commit()
    return instance


@pytest.fixture
async def member(db, org):
    user = User(email="owner@acme.test", hashed_password=hash_password("s3cret!"), organization_id=org.id)
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def admin(db):
    user = User(email="admin@platform.test", hashed_password=hash_password("adm1n!"), is_admin=True)
    db.add(user)
    await db.commit()
    return user


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}


@pytest.fixture
async def personal_instance(db, org):
    instance = WhatsAppInstance(
        organization_id=org.id,
        instance_name="acme-owner",
        instance_type="personal",
        provider="evolution",
        status="connected",
        phone_number="573001234567",
        notifications_enabled=True,
        notify_on_new_conversation=True,
    )
    db.add(instance)
    await db.commit()
    return instance


@pytest.fixture
def outbound(monkeypatch):
    """Route every WhatsApp send through a fake provider and collect the requests."""
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(201, json={
            "key": {"id": f"OUT-{len(sent)}"},
            "messages": [{"id": f"wamid.out{len(sent)}"}],
        })

    transport = httpx.MockTransport(handler)

    async def send(*args, **kwargs):
        return await whatsapp.send_whatsapp_message(*args, transport=transport, **kwargs)

    monkeypatch.setattr(notification_service, "send_whatsapp_message", send)
    monkeypatch.setattr(agent_service, "send_whatsapp_message", send)
    return sent


class FakeCompletions:
    def __init__(self, reply: str):
        self.reply = reply
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=f"  {self.reply}\n")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def fake_agent(monkeypatch):
    completions = FakeCompletions("Claro, hacemos envíos a todo el país.")
    ai_client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    monkeypatch.setattr(agent_service, "_get_client", lambda: ai_client)
    return completions
