"""
Shared Kernel Module
====================

Generic infrastructure used by the bounded contexts: structured logging
and the HTTP middleware / exception handlers.

DO NOT add issue lifecycle business logic to the shared kernel.
"""

__version__ = "1.0.0"
