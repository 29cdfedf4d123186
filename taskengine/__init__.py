"""
Task Engine - executes user-defined automation tasks (browser automation,
HTTP calls, CRM actions, messaging, reports) with retries and per-dependency
circuit breakers.
"""

__version__ = "1.0.0"
