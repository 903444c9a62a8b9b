"""Interfaces (application boundary) for VIGIL.

Defines framework-free contracts shared by the service layer and adapters,
such as the reporter port that receives per-item results.

Dependency rule: may import `vigil.domain` value objects only. It may be
imported by `vigil.service_layer`, `vigil.adapters`, and `vigil.bootstrap`.
"""
