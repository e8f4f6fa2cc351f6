"""Task orchestration and dispatch.

One inbound request flows through admission (``governor``), intent routing
(``router``) and dispatch (``dispatcher``); workers report back through
``worker`` and parents are rolled up by ``propagation``. The task store is
the only shared state: every status change is a conditional update keyed on
the expected current status, so cancellation is cooperative and a late
worker write after a cancel is a no-op.
"""
