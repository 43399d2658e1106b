"""Business logic services.

Modules are imported directly (``codehost_sync.services.sync_service``)
rather than re-exported here, which keeps the integrations package free to
depend on nothing but models and core.
"""
