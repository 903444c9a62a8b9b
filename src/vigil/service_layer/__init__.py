"""Service layer for VIGIL.

Implements the engine's use-cases: discovery, module import, collection,
mark evaluation, fixture resolution, selection and execution, orchestrated by
the session.

Dependency rule: may import `vigil.domain` and `vigil.interfaces`, but not
`vigil.adapters` or `vigil.bootstrap`.
"""
