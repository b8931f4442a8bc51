"""Realtime event channel: wire protocol and reconnecting socket."""
