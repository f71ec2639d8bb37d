import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import mock_custody.main as mock_custody  # noqa: E402
import mock_registry.main as mock_registry  # noqa: E402
from wallet_hub import main, models  # noqa: E402
from wallet_hub.clients.custody_client import CustodyClient, get_custody_client  # noqa: E402
from wallet_hub.clients.registry_client import PatientRegistryClient, get_registry_client  # noqa: E402
from wallet_hub.config import Settings, get_settings  # noqa: E402
from wallet_hub.database import get_db, make_engine  # noqa: E402
from wallet_hub.provisioning import WalletProvisioning  # noqa: E402
from wallet_hub.security import require_bearer_token  # noqa: E402
from wallet_hub.wallet_set import WalletSetRegistry, get_wallet_set_registry  # noqa: E402

WEBHOOK_SECRET = "whsec_test_secret"


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "custody_base_url": "http://mock-custody",
        "custody_api_key": "TEST_API_KEY:key-id:key-secret",
        "custody_entity_secret_ciphertext": "ciphertext",
        "registry_base_url": "http://mock-registry",
        "webhook_secret": WEBHOOK_SECRET,
        "wallet_set_id": None,
        "system_wallet_id": None,
        "bearer_token": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def session_factory(tmp_path):
    """
    Disposable SQLite database per test.
    """
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    models.Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def custody_state():
    mock_custody.state.reset()
    yield mock_custody.state
    mock_custody.state.reset()


def custody_client_for(settings: Settings) -> CustodyClient:
    transport = httpx.ASGITransport(app=mock_custody.app)
    return CustodyClient(settings, client=httpx.AsyncClient(transport=transport, base_url="http://mock-custody"))


@pytest.fixture
def custody_client(settings, custody_state):
    return custody_client_for(settings)


@pytest.fixture
def registry_client(settings):
    mock_registry.Base.metadata.drop_all(bind=mock_registry.engine)
    mock_registry.Base.metadata.create_all(bind=mock_registry.engine)
    transport = httpx.ASGITransport(app=mock_registry.app)
    return PatientRegistryClient(settings, client=httpx.AsyncClient(transport=transport, base_url="http://mock-registry"))


@pytest.fixture
def register_patient(registry_client):
    def _register(patient_id: str, name: str | None = None, phone: str | None = None, email: str | None = None):
        with mock_registry.SessionLocal() as session:
            session.add(mock_registry.Patient(id=patient_id, name=name, phone=phone, email=email))
            session.commit()

    return _register


@pytest.fixture
def wallet_sets():
    return WalletSetRegistry()


@pytest.fixture
def provisioning(custody_client, settings, wallet_sets):
    return WalletProvisioning(custody_client, settings, wallet_sets)


@pytest.fixture
def client(settings, session_factory, custody_client, registry_client, wallet_sets):
    """
    Hub API wired to the mock provider, the mock registry and a disposable DB.
    """

    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.router.on_startup.clear()
    main.app.dependency_overrides[get_db] = override_db
    main.app.dependency_overrides[get_settings] = lambda: settings
    main.app.dependency_overrides[get_custody_client] = lambda: custody_client
    main.app.dependency_overrides[get_registry_client] = lambda: registry_client
    main.app.dependency_overrides[get_wallet_set_registry] = lambda: wallet_sets
    main.app.dependency_overrides[require_bearer_token] = lambda: None
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
