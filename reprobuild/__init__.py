"""reprobuild: reproducible build and packaging for a multi-binary Rust service.

  - Pinned dependency lock, verified (never re-resolved) at build time
  - Filtered source set: build outputs and environment metadata never
    reach the compiler, so they never perturb the derivation hash
  - Offline compile-time query validation by default
  - Optional test gate, off by default
  - Content-addressed package outputs, published atomically
  - Two-stage container image with a single-binary runtime layer
  - Development environment sharing the package's dependency set
  - Output registry: packages.default, devShells.default, apps.default
"""

__version__ = "0.1.0"
__description__ = "Reproducible build and packaging pipeline for a multi-binary Rust service"

from reprobuild.core.pipeline import Pipeline
from reprobuild.models.build import BuildFlags
from reprobuild.models.identity import PackageIdentity
from reprobuild.cli.app import app as cli

__all__ = ["Pipeline", "BuildFlags", "PackageIdentity", "cli", "__version__"]
