"""Tests for the keyring-backed credential store."""

from __future__ import annotations

import asyncio
import base64

import pytest

from kubexdb.core.errors import CredentialStoreUnavailable
from kubexdb.core.security.credentials import CredentialStore

from conftest import MemoryKeyring


async def test_secret_is_generated_once_and_stable(
        memory_keyring: MemoryKeyring, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        "kubexdb.core.security.credentials.generate_random_password", lambda length: "ab_-" * (length // 4)
    )
    store = CredentialStore(backend=memory_keyring)

    first = await store.get_or_generate("pgpass")
    second = await store.get_or_generate("pgpass")

    assert first == second
    assert memory_keyring.set_calls == 1
    raw = memory_keyring.store[("kubexdb", "pgpass")]
    assert len(raw) == 40
    assert base64.b64decode(first).decode() == raw


async def test_secret_survives_a_new_store_instance(memory_keyring: MemoryKeyring) -> None:
    first = await CredentialStore(backend=memory_keyring).get_or_generate("mongopass")
    second = await CredentialStore(backend=memory_keyring).get_or_generate("mongopass")

    assert first == second


async def test_concurrent_callers_share_one_secret(memory_keyring: MemoryKeyring) -> None:
    store = CredentialStore(backend=memory_keyring)

    results = await asyncio.gather(*(store.get_or_generate("redispass") for _ in range(5)))

    assert len(set(results)) == 1
    assert memory_keyring.set_calls == 1


async def test_existing_base64_value_is_returned_verbatim(memory_keyring: MemoryKeyring) -> None:
    encoded = base64.b64encode(b"already-encoded").decode()
    memory_keyring.store[("kubexdb", "pgpass")] = encoded
    store = CredentialStore(backend=memory_keyring)

    assert await store.get("pgpass") == encoded
    assert await store.get_or_generate("pgpass") == encoded


async def test_get_missing_returns_none(memory_keyring: MemoryKeyring) -> None:
    assert await CredentialStore(backend=memory_keyring).get("nothing") is None


async def test_delete_is_idempotent(memory_keyring: MemoryKeyring) -> None:
    store = CredentialStore(backend=memory_keyring)
    await store.get_or_generate("pgpass")

    await store.delete("pgpass")
    await store.delete("pgpass")

    assert await store.get("pgpass") is None


async def test_unavailable_keyring_is_surfaced() -> None:
    store = CredentialStore(backend=MemoryKeyring(broken=True))

    with pytest.raises(CredentialStoreUnavailable):
        await store.get_or_generate("pgpass")
