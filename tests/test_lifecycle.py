import asyncio

from fnworker.core.lifecycle import ControlKind, LifecycleController, WorkerLifecycleState
from fnworker.core.platform import Platform


def _controller():
    platform = Platform()
    calls = []
    platform.set_drain_callback(lambda: calls.append("drain"))
    platform.set_termination_callback(lambda: calls.append("terminate"))
    return LifecycleController(platform), calls


def test_drain_is_idempotent():
    lifecycle, calls = _controller()

    async def scenario():
        lifecycle.apply(ControlKind.DRAIN)
        await lifecycle.run_pending_callbacks()
        lifecycle.apply(ControlKind.DRAIN)
        await lifecycle.run_pending_callbacks()

    asyncio.run(scenario())
    assert lifecycle.discard_events
    assert lifecycle.state is WorkerLifecycleState.DRAINING
    assert calls == ["drain"]


def test_continue_resumes_and_rearms_drain():
    lifecycle, calls = _controller()

    async def scenario():
        lifecycle.apply(ControlKind.DRAIN)
        await lifecycle.run_pending_callbacks()
        lifecycle.apply(ControlKind.CONTINUE)
        assert not lifecycle.discard_events
        lifecycle.apply(ControlKind.DRAIN)
        await lifecycle.run_pending_callbacks()

    asyncio.run(scenario())
    assert calls == ["drain", "drain"]


def test_terminate_is_final():
    lifecycle, calls = _controller()

    async def scenario():
        lifecycle.apply(ControlKind.TERMINATE)
        lifecycle.apply(ControlKind.TERMINATE)
        lifecycle.apply(ControlKind.CONTINUE)
        await lifecycle.run_pending_callbacks()

    asyncio.run(scenario())
    assert lifecycle.discard_events
    assert lifecycle.state is WorkerLifecycleState.TERMINATING
    assert calls == ["terminate"]


def test_drain_then_terminate_runs_both_callbacks_in_order():
    lifecycle, calls = _controller()

    async def scenario():
        lifecycle.submit(ControlKind.DRAIN)
        lifecycle.submit(ControlKind.TERMINATE)
        assert lifecycle.apply_queued() == 2
        await lifecycle.run_pending_callbacks()

    asyncio.run(scenario())
    assert calls == ["drain", "terminate"]


def test_async_callback_and_failing_callback():
    platform = Platform()
    calls = []

    async def on_drain():
        await asyncio.sleep(0)
        calls.append("drain")

    def on_terminate():
        raise RuntimeError("cleanup failed")

    platform.set_drain_callback(on_drain)
    platform.set_termination_callback(on_terminate)
    lifecycle = LifecycleController(platform)

    async def scenario():
        lifecycle.apply(ControlKind.DRAIN)
        lifecycle.apply(ControlKind.TERMINATE)
        # a raising callback is logged, never propagated
        await lifecycle.run_pending_callbacks()

    asyncio.run(scenario())
    assert calls == ["drain"]


def test_missing_callbacks_are_fine():
    lifecycle = LifecycleController(Platform())

    async def scenario():
        lifecycle.apply(ControlKind.DRAIN)
        await lifecycle.run_pending_callbacks()

    asyncio.run(scenario())
    assert not lifecycle.drain_callback_pending


def test_wait_for_message():
    async def scenario():
        lifecycle = LifecycleController()
        waiter = asyncio.ensure_future(lifecycle.wait_for_message())
        await asyncio.sleep(0)
        lifecycle.submit("continue")
        return await asyncio.wait_for(waiter, 1)

    assert asyncio.run(scenario()) is ControlKind.CONTINUE
