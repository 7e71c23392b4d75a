"""Session, call-URL and call orchestration core.

Components, leaves first: the key/value store (``db.store``), the identity
resolver, the call-URL manager and the call orchestrator. ``services`` wires them
together from ``config.settings``.
"""
