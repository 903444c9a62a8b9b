"""Bootstrap (composition root) for VIGIL.

Assembles a runnable session: reads configuration, optionally installs
logging, picks a reporter adapter and wires it into the service layer.

Import rules:
- Entry points import *this* package (not adapters/service_layer/interfaces/domain).
- This package may import: `vigil.adapters`, `vigil.service_layer`,
  `vigil.interfaces`, `vigil.domain`, and `vigil.config`.
- Inner layers must not import `vigil.bootstrap`.

Public surface:
- `bootstrap()` returns an `AppContainer`; `run()` is the one-call facade.
"""

from .bootstrap import AppContainer, bootstrap, build_reporter, run

__all__ = ["AppContainer", "bootstrap", "build_reporter", "run"]
