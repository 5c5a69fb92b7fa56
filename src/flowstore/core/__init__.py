"""Flowstore core framework components.

The core framework consists of:
- Store: State container with dispatch, subscribe, get_state, reducer and flow
- Task: Cancellable handle to one action invocation
- ActionContext: Capabilities injected into running actions and flows
- CancellationToken: Hierarchical cooperative cancellation flag
- Loading / Failure: Synthetic actions emitted around asynchronous work

Typical usage:
    from flowstore.core.store import Store

    def counter(state, event):
        if state is None:
            return 0
        return state + 1 if event.action == "increase" else state

    async def watch(context, _payload):
        while True:
            await context.action("increase")
            if context.select() >= 3:
                context.dispatch("limit_reached")

    store = Store(counter)
    store.flow(watch)
"""
