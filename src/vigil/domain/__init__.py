"""Domain layer for VIGIL.

Contains the engine's value objects (scopes, fixture definitions, test items,
marks, outcomes, reports) and its error taxonomy. This package is deliberately
free of I/O and import machinery.

Dependency rule: do not import from `vigil.service_layer`, `vigil.adapters`
or `vigil.bootstrap`.
"""
