import pytest

from market_alerts.db.dbadapter import UniverseStore


@pytest.mark.asyncio
async def test_missing_override_is_none(store):
    assert await store.get_symbols("CUSTOM") is None


@pytest.mark.asyncio
async def test_save_replaces_previous_override(store):
    await store.save_symbols("CUSTOM", ["AAPL", "MSFT"])
    await store.save_symbols("CUSTOM", ["TSLA"])

    assert await store.get_symbols("CUSTOM") == ["TSLA"]


@pytest.mark.asyncio
async def test_delete_override(store):
    await store.save_symbols("CUSTOM", ["AAPL"])

    assert await store.delete_symbols("CUSTOM") is True
    assert await store.delete_symbols("CUSTOM") is False
    assert await store.get_symbols("CUSTOM") is None


@pytest.mark.asyncio
async def test_use_before_init_raises(tmp_path):
    store = UniverseStore(str(tmp_path / "x.db"))
    with pytest.raises(RuntimeError):
        await store.get_symbols("CUSTOM")


@pytest.mark.asyncio
async def test_init_is_idempotent(tmp_path):
    store = UniverseStore(str(tmp_path / "y.db"))
    await store.init()
    try:
        await store.init()
        await store.save_symbols("SP100", ["AAPL"])
        assert await store.get_symbols("SP100") == ["AAPL"]
    finally:
        await store.close()
