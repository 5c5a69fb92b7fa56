"""Store tests.

Tests reduction, state selection, subscriptions, dynamic reducers, flows,
dispatch_once and disposal.
"""

import asyncio
import glob
import os

import pytest

from flowstore.core.domain import Event, Failure, Init, Loading, StoreDisposedError
from flowstore.core.store import ANY_CHANGE, Store, create_store
from flowstore.core.task import Task, TaskGroup, TaskStatus
from tests.conftest import EventRecorder, counter


class TestReduction:
    def test_counter_sequence(self, store):
        """Test the increase/decrease scenario: state goes 1, then back to 0."""
        store.dispatch("increase")
        assert store.get_state() == 1
        store.dispatch("decrease")
        assert store.get_state() == 0

    def test_function_actions_as_identities(self):
        """Test that reducers can match on action functions and see their results."""
        def increase(context, amount):
            return amount

        def adder(state, event):
            if state is None:
                return 0
            return state + event.result if event.action is increase else state

        store = Store(adder, log_dir="")
        store.dispatch(increase, 5)
        store.dispatch(increase, 2)
        assert store.get_state() == 7

    def test_state_is_replay_of_dispatch_sequence(self, store):
        """Test that the final state equals folding the reducer over the dispatched events."""
        sequence = ["increase", "increase", "noop", "decrease", "increase"]
        for action in sequence:
            store.dispatch(action)

        expected = counter(None, Event(Init))
        for action in sequence:
            expected = counter(expected, Event(action))
        assert store.get_state() == expected == 2

    def test_store_without_reducer_has_none_state(self):
        """Test that a store created without reducers starts with None."""
        store = create_store(log_dir="")
        store.dispatch("anything")
        assert store.get_state() is None

    def test_plain_action_settles_synchronously(self, store):
        """Test that dispatching a non-callable action yields a settled sync task."""
        task = store.dispatch("increase")
        assert isinstance(task, Task)
        assert task.is_async is False
        assert task.done()
        assert task.result is None

    def test_reducer_error_propagates_to_dispatch_caller(self):
        """Test that a throwing reducer raises out of dispatch without a Failure event."""
        seen = []

        def fragile(state, event):
            seen.append(event.action)
            if event.action == "explode":
                raise KeyError("reducer bug")
            return state

        store = Store(fragile, log_dir="")
        with pytest.raises(KeyError):
            store.dispatch("explode")
        assert Failure not in seen


class TestGetState:
    @pytest.fixture
    def dict_store(self):
        return Store(lambda state, event: state or {"a": 1, "b": 2}, log_dir="")

    def test_no_selector_returns_snapshot(self, dict_store):
        """Test that get_state() returns the snapshot itself."""
        assert dict_store.get_state() is dict_store.state

    def test_key_selector(self, dict_store):
        """Test that a string key selects one property, None when missing."""
        assert dict_store.get_state("a") == 1
        assert dict_store.get_state("missing") is None

    def test_function_selector(self, dict_store):
        """Test that a function selector is called with the snapshot."""
        assert dict_store.get_state(lambda state: state["a"] + state["b"]) == 3

    def test_list_of_selectors(self, dict_store):
        """Test that a list of selectors returns a positional list of values."""
        assert dict_store.get_state(["b", lambda state: state["a"]]) == [2, 1]

    def test_attribute_selector_on_object_state(self):
        """Test that string keys read attributes when the state is not a mapping."""
        class Profile:
            name = "ada"

        store = Store(lambda state, event: state or Profile(), log_dir="")
        assert store.get_state("name") == "ada"


class TestSubscriptions:
    def test_default_listener_receives_new_state(self, store, recorder):
        """Test that default listeners get the event with the reduced state."""
        store.subscribe(recorder)
        store.dispatch("increase", "p")
        assert recorder.actions == ["increase"]
        assert recorder.events[0].state == 1
        assert recorder.events[0].payload == "p"

    def test_default_listener_skips_unchanged_state(self, store, recorder):
        """Test that default listeners are not called when the state is unchanged."""
        store.subscribe(recorder)
        store.dispatch("noop")
        assert recorder.events == []

    def test_action_listener_called_without_state_change(self, store, recorder):
        """Test that action listeners fire on every dispatch of their action."""
        store.subscribe("noop", recorder)
        store.dispatch("noop", 1)
        store.dispatch("increase")
        store.dispatch("noop", 2)
        assert recorder.payloads == [1, 2]
        assert recorder.events[0].state is None

    def test_unsubscribe(self, store, recorder):
        """Test that an unsubscribed listener is no longer called, and unsubscribing twice is harmless."""
        unsubscribe = store.subscribe(recorder)
        store.dispatch("increase")
        unsubscribe()
        unsubscribe()
        store.dispatch("increase")
        assert len(recorder.events) == 1

    def test_listeners_called_in_registration_order(self, store):
        """Test that listeners for one key are invoked in the order they subscribed."""
        order = []
        store.subscribe("noop", lambda event: order.append("first"))
        store.subscribe("noop", lambda event: order.append("second"))
        store.subscribe("noop", lambda event: order.append("third"))
        store.dispatch("noop")
        assert order == ["first", "second", "third"]

    def test_unsubscribe_during_notification(self, store, recorder):
        """Test that a listener removing itself mid-notification does not break the others."""
        unsubscribes = []

        def once(event):
            unsubscribes[0]()

        unsubscribes.append(store.subscribe("noop", once))
        store.subscribe("noop", recorder)
        store.dispatch("noop")
        store.dispatch("noop")
        assert len(recorder.events) == 2

    def test_subscribe_rejects_bad_arity(self, store):
        """Test that subscribe() requires one or two arguments."""
        with pytest.raises(TypeError):
            store.subscribe()

    @pytest.mark.asyncio
    async def test_signals_only_reach_signal_listeners(self, store):
        """Test that Loading/Failure reach their own subscribers, not the real action's."""
        async def fails(context, payload):
            await asyncio.sleep(0)
            raise RuntimeError("nope")

        loading, failure, direct = EventRecorder(), EventRecorder(), EventRecorder()
        store.subscribe(Loading, loading)
        store.subscribe(Failure, failure)
        store.subscribe(fails, direct)

        task = store.dispatch(fails, 7)
        with pytest.raises(RuntimeError):
            await task

        assert [event.target for event in loading.events] == [fails]
        assert [event.target for event in failure.events] == [fails]
        assert isinstance(failure.events[0].error, RuntimeError)
        assert failure.events[0].payload == 7
        assert direct.events == []


class TestDynamicReducers:
    def test_key_reducer_derives_initial_state_and_notifies(self, recorder):
        """Test that adding a key reducer re-derives the state and notifies once."""
        store = Store(log_dir="")
        store.subscribe(recorder)
        result = store.reducer("count", counter)
        assert result is store
        assert store.get_state() == {"count": 0}
        assert recorder.actions == [Init]

    def test_re_adding_same_reducer_is_noop(self, recorder):
        """Test that registering the identical reducer twice changes nothing."""
        store = Store(log_dir="")
        store.reducer({"count": counter})
        state = store.get_state()
        store.subscribe(recorder)
        store.reducer("count", counter)
        store.reducer({"count": counter})
        assert store.get_state() is state
        assert recorder.events == []

    def test_whole_state_reducers_are_deduplicated(self):
        """Test that the same whole-state reducer is only chained once."""
        calls = []

        def tracer(state, event):
            calls.append(event.action)
            return state

        store = Store(counter, log_dir="")
        store.reducer(tracer, tracer)
        store.reducer(tracer)
        calls.clear()
        store.dispatch("increase")
        assert calls == ["increase"]

    def test_composition_order(self):
        """Test that root runs first, then whole-state reducers, then key reducers."""
        def root(state, event):
            return state if state is not None else {"root": True}

        def whole(state, event):
            if "seen_key" in state:
                return state
            return {**state, "seen_key": "key" in state}

        store = Store(root, log_dir="")
        store.reducer(whole)
        store.reducer("key", lambda state, event: state or "value")
        assert store.get_state() == {"root": True, "seen_key": False, "key": "value"}

    def test_rejects_invalid_arguments(self, store):
        """Test that reducer() rejects empty calls and non-callables."""
        with pytest.raises(ValueError):
            store.reducer()
        with pytest.raises(ValueError):
            store.reducer("key", "not callable")
        with pytest.raises(ValueError):
            store.reducer(42)


class TestFlow:
    def test_flow_runs_once_per_store(self, store):
        """Test that starting the same flow twice returns the existing task."""
        runs = []

        def flow(context, payload):
            runs.append(payload)
            return "started"

        first = store.flow(flow)
        second = store.flow(flow)
        assert first is second
        assert first.result == "started"
        assert runs == [None]

    def test_same_flow_on_two_stores(self):
        """Test that flow bookkeeping is per store."""
        runs = []

        def flow(context, payload):
            runs.append(context.select())

        Store(counter, log_dir="").flow(flow)
        Store(lambda state, event: "other", log_dir="").flow(flow)
        assert runs == [0, "other"]

    @pytest.mark.asyncio
    async def test_multiple_flows_return_group(self, store):
        """Test that several flows return an awaitable, cancellable TaskGroup."""
        def one(context, payload):
            return 1

        async def two(context, payload):
            await context.delay(0.01)
            return 2

        group = store.flow(one, two)
        assert isinstance(group, TaskGroup)
        assert len(group) == 2
        assert group[0] is store.flow(one)
        assert await group == [1, 2]

    def test_group_cancel_cancels_every_flow(self, store):
        """Test that cancelling a TaskGroup cancels each flow task."""
        group = store.flow(lambda context, payload: None, lambda context, payload: None)
        group.cancel()
        assert all(task.token.is_cancelled() for task in group)

    def test_flow_requires_arguments(self, store):
        """Test that flow() without flows is rejected."""
        with pytest.raises(ValueError):
            store.flow()


class TestDispatchOnce:
    def test_dispatch_once_caches_task(self, store):
        """Test that dispatch_once runs the action only the first time."""
        runs = []

        def setup(context, payload):
            runs.append(payload)
            return payload

        first = store.dispatch_once(setup, "a")
        second = store.dispatch_once(setup, "b")
        assert first is second
        assert runs == ["a"]


class TestDispose:
    @pytest.mark.asyncio
    async def test_dispose_cancels_running_tasks(self, tmp_path):
        """Test that dispose cancels async tasks that are not flows, without logging errors."""
        async def poll(context, payload):
            await context.delay(0.02)
            context.dispatch("increase")

        log_dir = str(tmp_path)
        store = Store(counter, log_dir=log_dir)
        task = store.dispatch(poll)
        store.dispose()
        await asyncio.sleep(0.05)

        assert task.status is TaskStatus.CANCELLED
        assert store._running == set()
        [log_file] = glob.glob(os.path.join(log_dir, "*.log"))
        with open(log_file) as f:
            assert "[ERROR]" not in f.read()

    def test_dispose_cancels_flows_and_blocks_use(self, store):
        """Test that dispose cancels flows and rejects further use."""
        task = store.flow(lambda context, payload: None)
        store.dispose()
        assert task.token.is_cancelled()
        assert store.disposed
        with pytest.raises(StoreDisposedError):
            store.dispatch("increase")
        with pytest.raises(StoreDisposedError):
            store.subscribe(lambda event: None)
        with pytest.raises(StoreDisposedError):
            store.reducer("key", counter)

    def test_dispose_twice_is_noop(self, store):
        """Test that disposing an already disposed store does nothing."""
        store.dispose()
        store.dispose()
        assert store.disposed

    def test_dispose_drops_listeners(self, store, recorder):
        """Test that dispose clears the listener registry."""
        store.subscribe(recorder)
        store.subscribe("increase", recorder)
        store.dispose()
        assert store._subscriptions == {}
        assert ANY_CHANGE not in store._subscriptions
