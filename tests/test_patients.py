import asyncio

import pytest

from tests.conftest import custody_client_for, make_settings
from wallet_hub.config import EntityType
from wallet_hub.directory import AccountDirectory
from wallet_hub.exceptions import NotFound, ServiceUnavailable, UnknownPatient
from wallet_hub.patients import PatientWalletResolver
from wallet_hub.provisioning import WalletProvisioning
from wallet_hub.wallet_set import WalletSetRegistry


@pytest.fixture
def resolver(db, provisioning, registry_client):
    return PatientWalletResolver(db, provisioning, registry_client)


def test_patient_wallet_created_once(resolver, register_patient, custody_state, db):
    register_patient("p1", name="Jane Roe")

    first = asyncio.run(resolver.get_or_create("p1"))
    keys_after_first = list(custody_state.idempotency_keys)
    second = asyncio.run(resolver.get_or_create("p1"))

    assert first.wallet_id == second.wallet_id
    assert first.entity_type == EntityType.PATIENT.value
    assert custody_state.wallets[first.wallet_id]["name"] == "Patient wallet for p1"
    # The second call is served from the directory alone.
    assert custody_state.idempotency_keys == keys_after_first
    assert len(AccountDirectory(db).list(EntityType.PATIENT)) == 1


def test_lookup_only_does_not_create(resolver, register_patient, custody_state):
    register_patient("p1")
    with pytest.raises(NotFound):
        asyncio.run(resolver.get_or_create("p1", create_if_not_exists=False))
    assert custody_state.wallets == {}


def test_unknown_patient_creates_nothing(resolver, registry_client, custody_state, db):
    with pytest.raises(UnknownPatient):
        asyncio.run(resolver.get_or_create("ghost"))
    assert custody_state.idempotency_keys == []
    assert AccountDirectory(db).list() == []


def test_concurrent_first_use_yields_one_account(
    session_factory, provisioning, registry_client, register_patient, custody_state
):
    register_patient("p1", name="Jane Roe")
    sessions = [session_factory(), session_factory()]
    try:
        resolvers = [PatientWalletResolver(s, provisioning, registry_client) for s in sessions]

        async def race():
            return await asyncio.gather(*(r.get_or_create("p1") for r in resolvers))

        accounts = asyncio.run(race())
        assert accounts[0].wallet_id == accounts[1].wallet_id
        assert len(AccountDirectory(sessions[0]).list(EntityType.PATIENT)) == 1
        # The loser's provider wallet is orphaned, not recorded.
        assert len(custody_state.wallets) == 2
    finally:
        for session in sessions:
            session.close()


def test_wallet_by_phone_then_email(resolver, register_patient):
    register_patient("p1", phone="+15550001", email="one@example.com")
    register_patient("p2", email="two@example.com")

    by_phone = asyncio.run(resolver.get_by_contact(phone="+15550001"))
    assert by_phone.entity_id == "p1"

    # Phone misses, email matches.
    by_email = asyncio.run(resolver.get_by_contact(phone="+15559999", email="two@example.com"))
    assert by_email.entity_id == "p2"

    assert asyncio.run(resolver.get_by_contact(email="one@example.com")).wallet_id == by_phone.wallet_id


def test_wallet_by_contact_unknown(resolver, register_patient):
    register_patient("p1", phone="+15550001")
    with pytest.raises(UnknownPatient):
        asyncio.run(resolver.get_by_contact(phone="+15550002", email="nobody@example.com"))


def test_unconfigured_provider_fails_before_registry_lookup(db, registry_client, register_patient, custody_state, monkeypatch):
    register_patient("p1", phone="+15550001")
    settings = make_settings(custody_api_key=None)
    provisioning = WalletProvisioning(custody_client_for(settings), settings, WalletSetRegistry())
    resolver = PatientWalletResolver(db, provisioning, registry_client)

    requested = []
    real_get = registry_client.client.get

    async def recording_get(url, **kwargs):
        requested.append(url)
        return await real_get(url, **kwargs)

    monkeypatch.setattr(registry_client.client, "get", recording_get)

    with pytest.raises(ServiceUnavailable):
        asyncio.run(resolver.get_or_create("p1"))
    with pytest.raises(ServiceUnavailable):
        asyncio.run(resolver.get_by_contact(phone="+15550001"))
    assert requested == []
    assert custody_state.idempotency_keys == []
