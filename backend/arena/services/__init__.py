"""Business services.

Modules are imported directly (``arena.services.scores`` etc.); the lifecycle
manager depends on ``records`` and the read/write services depend on the
lifecycle manager.
"""
