import asyncio

from src.sitesmith.core.debounce import Debouncer


def test_only_latest_call_fires():
    seen = []

    async def scenario():
        debouncer = Debouncer(0.01, seen.append)
        debouncer.call(1)
        debouncer.call(2)
        debouncer.call(3)
        assert debouncer.pending
        await debouncer.flush()
        assert not debouncer.pending

    asyncio.run(scenario())
    assert seen == [3]


def test_cancel_drops_pending_call():
    seen = []

    async def scenario():
        debouncer = Debouncer(0.01, seen.append)
        debouncer.call("x")
        debouncer.cancel()
        await asyncio.sleep(0.03)

    asyncio.run(scenario())
    assert seen == []


def test_async_callback_and_failures_are_contained(caplog):
    seen = []

    async def record(value):
        seen.append(value)

    def boom(_value):
        raise RuntimeError("nope")

    async def scenario():
        ok = Debouncer(0, record)
        ok.call("a")
        await ok.flush()
        bad = Debouncer(0, boom)
        bad.call("b")
        await bad.flush()

    with caplog.at_level("ERROR", logger="sitesmith.store"):
        asyncio.run(scenario())
    assert seen == ["a"]
    assert any("debounced_callback_failed" in r.message for r in caplog.records)
