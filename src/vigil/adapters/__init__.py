"""Adapters (infrastructure) for VIGIL.

Provide concrete implementations of the interfaces, e.g. reporters that
record results in memory or forward them to the logging system.

Dependency rule: may import `vigil.domain` and `vigil.interfaces`; the domain
must not import this package.
"""
