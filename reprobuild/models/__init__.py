"""reprobuild data models — all Pydantic v2, all frozen (immutable)."""

from reprobuild.models.artifacts import ArtifactRef
from reprobuild.models.build import (
    BuildFlags,
    BuildInput,
    Derivation,
    SourceEntry,
    SourceSet,
)
from reprobuild.models.environment import DevEnvironment, ToolInstall
from reprobuild.models.identity import PackageIdentity, RevisionState
from reprobuild.models.image import (
    BuilderStage,
    ContainerImage,
    CopyContract,
    RuntimeStage,
)
from reprobuild.models.lock import (
    BinaryTarget,
    DependencyLock,
    LockedDependency,
    Manifest,
)
from reprobuild.models.registry import OutputKind, RegistryEntry
from reprobuild.models.steps import PIPELINE_STEPS, StepDefinition, StepState

__all__ = [
    # identity
    "PackageIdentity",
    "RevisionState",
    # lock
    "BinaryTarget",
    "Manifest",
    "LockedDependency",
    "DependencyLock",
    # build
    "BuildFlags",
    "SourceEntry",
    "SourceSet",
    "BuildInput",
    "Derivation",
    # image
    "CopyContract",
    "BuilderStage",
    "RuntimeStage",
    "ContainerImage",
    # environment
    "ToolInstall",
    "DevEnvironment",
    # registry
    "OutputKind",
    "RegistryEntry",
    # artifacts
    "ArtifactRef",
    # steps
    "StepState",
    "StepDefinition",
    "PIPELINE_STEPS",
]
