from unittest.mock import patch

import pytest
from sqlalchemy.pool import StaticPool

from smart_digest.config import get_settings
from smart_digest.database import (
    _create_postgres_engine,
    _create_sqlite_engine,
    dispose_engine,
    get_session_maker,
)
from smart_digest.services.digest_store import DigestStore


def test_postgres_engine_bounded_by_store_timeout():
    settings = get_settings().model_copy(update={"use_sqlite": False, "digest_store_timeout_seconds": 4.0})

    with patch("smart_digest.database.create_async_engine") as create:
        _create_postgres_engine(settings)

    kwargs = create.call_args.kwargs
    assert create.call_args.args[0].startswith("postgresql+asyncpg://")
    assert kwargs["pool_timeout"] == 4.0
    assert kwargs["connect_args"] == {"timeout": 4.0, "command_timeout": 4.0}
    assert kwargs["pool_pre_ping"] is True


def test_sqlite_file_engine_waits_on_locks_for_store_timeout(tmp_path):
    settings = get_settings().model_copy(
        update={
            "use_sqlite": True,
            "sqlite_url": f"sqlite+aiosqlite:///{tmp_path}/nested/digest.db",
            "digest_store_timeout_seconds": 3.0,
        }
    )

    with patch("smart_digest.database.create_async_engine") as create, patch("smart_digest.database.event"):
        _create_sqlite_engine(settings)

    assert (tmp_path / "nested").is_dir()
    assert create.call_args.kwargs["connect_args"] == {"check_same_thread": False, "timeout": 3.0}
    assert "poolclass" not in create.call_args.kwargs


def test_sqlite_memory_engine_shares_one_connection():
    settings = get_settings().model_copy(
        update={"use_sqlite": True, "sqlite_url": "sqlite+aiosqlite:///:memory:"}
    )

    with patch("smart_digest.database.create_async_engine") as create:
        _create_sqlite_engine(settings)

    assert create.call_args.kwargs["poolclass"] is StaticPool
    assert create.call_args.kwargs["connect_args"] == {"check_same_thread": False}


def test_store_defaults_to_shared_session_maker():
    with patch("smart_digest.services.digest_store.get_session_maker") as get_maker:
        store = DigestStore()

    get_maker.assert_called_once_with()
    assert store._session_factory is get_maker.return_value


@pytest.mark.asyncio
async def test_dispose_engine_resets_session_maker():
    first = get_session_maker()
    assert get_session_maker() is first

    await dispose_engine()

    assert get_session_maker() is not first
    await dispose_engine()
