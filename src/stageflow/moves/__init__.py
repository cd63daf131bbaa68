"""Stage-transition engine -- drag dispatch, move gating and execution.

Provides the drag dispatcher (tagged drag intents), the move gate
evaluator, the pending move holder and transition state machine, the
stage reorder coordinator, the opportunity move executor with its
best-effort side-effect queue, and the user notifier interface.
"""
