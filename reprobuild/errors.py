"""Error taxonomy for the build pipeline.

Every failure aborts the enclosing build; nothing here is retried and no
partial artifact is published under a stable output key.
"""

from __future__ import annotations


class ReproBuildError(RuntimeError):
    """Base class for every pipeline failure."""


class LockMismatchError(ReproBuildError):
    """The manifest requires a dependency absent from or inconsistent with the lock.

    Raised before any compilation step and never auto-resolved.
    """


class CompilationError(ReproBuildError):
    """The compiler exited non-zero.  ``output`` carries its text verbatim."""

    def __init__(self, message: str, *, returncode: int = 1, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class LiveDependencyError(CompilationError):
    """Online query validation could not reach the database.

    Surfaces as a connection-refused-class error, the failure offline query
    validation exists to eliminate.
    """


class QueryMetadataError(CompilationError):
    """Offline query validation found a query with no recorded metadata."""


class TestSuiteError(ReproBuildError):
    """The workspace test suite failed."""

    __test__ = False  # keep pytest from collecting this class

    def __init__(self, message: str, *, returncode: int = 1, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class TestDependencyUnavailableError(TestSuiteError):
    """A test needed a live resource (pool/connection timeout)."""

    __test__ = False


class ImageAssemblyError(ReproBuildError):
    """The copy step could not find the expected binary in the builder stage."""


class ArtifactIntegrityError(ReproBuildError):
    """A stored artifact's bytes no longer match its address."""


class RegistryError(ReproBuildError):
    """An attempt to mutate or re-register an output registry key."""


class ProvisioningError(ReproBuildError):
    """A development environment hook exited non-zero."""


class SourceChangedError(ReproBuildError):
    """A source file changed between filtering and materializing the build tree."""
