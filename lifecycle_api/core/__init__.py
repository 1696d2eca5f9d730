"""
Core application utilities.

This package provides:
- Application-level settings (separate from DB settings)
- Capabilities, policies and the caller of a request
- The tenant context and its transaction
- The domain error taxonomy
- Dependency helpers (caller, tenant context, list query parameters)
"""
