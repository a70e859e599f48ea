"""Pipeline orchestrator — wires the components into one build entry point.

The Pipeline owns the store, the package builder, the container assembler
and the environment composer, and runs one derivation's steps strictly in
order:

    source_filter -> resolve_lock -> compile -> test -> image

Each step's state transition is validated against ``VALID_TRANSITIONS`` and
its input/output hashes are logged.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

from reprobuild.config import BuildSettings
from reprobuild.core.artifact_store import ContentAddressedStore
from reprobuild.core.compiler import CargoCompiler, Compiler
from reprobuild.core.container import ContainerAssembler
from reprobuild.core.derivation import PackageBuilder
from reprobuild.core.environment import EnvironmentComposer, Runner, _subprocess_runner
from reprobuild.core.hasher import compute_step_hash
from reprobuild.core.lock_resolver import load_lock, load_manifest, verify_lock
from reprobuild.core.query_checker import QueryValidator
from reprobuild.core.registry import OutputRegistry
from reprobuild.core.source_filter import SourceFilter
from reprobuild.core.version_resolver import read_revision_state, resolve_version
from reprobuild.errors import LockMismatchError, ReproBuildError, TestSuiteError
from reprobuild.models.build import BuildFlags, BuildInput, Derivation
from reprobuild.models.environment import DevEnvironment
from reprobuild.models.identity import PackageIdentity
from reprobuild.models.image import ContainerImage
from reprobuild.models.lock import BinaryTarget, DependencyLock, Manifest
from reprobuild.models.registry import APP_KEY
from reprobuild.models.steps import PIPELINE_STEPS, VALID_TRANSITIONS, StepState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InvalidTransitionError(ReproBuildError):
    """Raised when a requested step transition is not valid."""


class Pipeline:
    """Central build pipeline.

    Parameters
    ----------
    settings:
        Operational settings.  Uses defaults (and REPROBUILD_* env) if None.
    compiler:
        Toolchain backend; ``CargoCompiler`` if None.
    validator:
        Query validator; built from ``settings.database_url`` if None.
    """

    def __init__(
        self,
        settings: BuildSettings | None = None,
        *,
        compiler: Compiler | None = None,
        validator: QueryValidator | None = None,
    ) -> None:
        self.settings = settings or BuildSettings()
        s = self.settings

        self.store = ContentAddressedStore(s.store_path)
        self.builder = PackageBuilder(
            self.store,
            compiler or CargoCompiler(),
            validator or QueryValidator(s.database_url, connect_timeout=s.database_connect_timeout),
        )
        self.assembler = ContainerAssembler(
            self.builder,
            self.store,
            builder_image=s.builder_image,
            base_image=s.base_image,
            runtime_packages=s.runtime_packages,
            port=s.container_port,
        )
        self.composer = EnvironmentComposer(
            build_tools=s.build_tools,
            dev_packages=s.dev_packages,
            hooks=[s.hook_tool],
            state_dir=s.state_dir,
        )
        self._states: dict[str, StepState] = {}
        self.reset()

    # ------------------------------------------------------------------
    # Step state
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self._states = {d.step_id: StepState.NOT_STARTED for d in PIPELINE_STEPS}

    def get_states(self) -> dict[str, StepState]:
        return dict(self._states)

    def _transition(self, step_id: str, target: StepState) -> None:
        current = self._states[step_id]
        if target not in VALID_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot transition {step_id} from {current.value} to {target.value}"
            )
        definition = next(d for d in PIPELINE_STEPS if d.step_id == step_id)
        if target in (StepState.RUNNING, StepState.SKIPPED) and definition.after:
            before = self._states[definition.after]
            if before not in (StepState.PASSED, StepState.SKIPPED):
                raise InvalidTransitionError(
                    f"Cannot start {step_id}: {definition.after} is {before.value}"
                )
        self._states[step_id] = target

    def _run_step(
        self,
        step_id: str,
        payload: dict[str, Any],
        fn: Callable[[], T],
        describe: Callable[[T], Any],
        handed_off: tuple[type[ReproBuildError], ...] = (),
    ) -> T:
        """Run *fn* as *step_id*.

        Errors listed in *handed_off* belong to a later step that *fn* runs
        itself; they leave this step PASSED and propagate.
        """
        self._transition(step_id, StepState.RUNNING)
        logger.info("[%s] input_hash=%s", step_id, compute_step_hash(step_id, payload)[:12])
        try:
            result = fn()
        except handed_off:
            self._transition(step_id, StepState.PASSED)
            raise
        except Exception:
            self._transition(step_id, StepState.FAILED)
            raise
        self._transition(step_id, StepState.PASSED)
        logger.info("[%s] output_hash=%s", step_id, compute_step_hash(step_id, {"out": describe(result)})[:12])
        return result

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def resolve_identity(self, name: str | None = None, version: str | None = None) -> PackageIdentity:
        """Build the package identity; version defaults to the VCS-derived one."""
        if version is None:
            version = resolve_version(read_revision_state(self.settings.workspace_root))
        return PackageIdentity(name=name or self.settings.package_name, version=version)

    def load_manifest(self) -> Manifest:
        path = self.settings.manifest_path
        if not path.exists():
            raise LockMismatchError(f"Manifest not found: {path}")
        manifest = load_manifest(path)
        if not manifest.binaries:
            manifest = manifest.model_copy(
                update={"binaries": [BinaryTarget(name=b) for b in self.settings.binaries]}
            )
        return manifest

    def prepare(
        self,
        identity: PackageIdentity,
        flags: BuildFlags | None = None,
        binaries: list[str] | None = None,
    ) -> BuildInput:
        """Run source filtering and lock verification; return the BuildInput."""
        root = self.settings.workspace_root
        source = self._run_step(
            "source_filter",
            {"root": str(Path(root).resolve())},
            lambda: SourceFilter(root).collect(),
            lambda s: s.cache_key,
        )

        def _load_and_verify() -> tuple[Manifest, DependencyLock]:
            manifest = self.load_manifest()
            lock = load_lock(self.settings.lock_path)
            verify_lock(manifest, lock)
            return manifest, lock

        manifest, lock = self._run_step(
            "resolve_lock",
            {"manifest": str(self.settings.manifest_path), "lock": str(self.settings.lock_path)},
            _load_and_verify,
            lambda pair: pair[1].model_dump(mode="json"),
        )
        return BuildInput(
            source=source,
            lock=lock,
            manifest=manifest,
            identity=identity,
            flags=flags or BuildFlags(),
            binaries=binaries or manifest.binary_names,
        )

    def collect_input(
        self,
        identity: PackageIdentity,
        flags: BuildFlags | None = None,
        binaries: list[str] | None = None,
    ) -> BuildInput:
        """Recompute the BuildInput without touching step state."""
        manifest = self.load_manifest()
        return BuildInput(
            source=SourceFilter(self.settings.workspace_root).collect(),
            lock=load_lock(self.settings.lock_path),
            manifest=manifest,
            identity=identity,
            flags=flags or BuildFlags(),
            binaries=binaries or manifest.binary_names,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def _compile(self, build_input: BuildInput) -> Derivation:
        try:
            derivation = self._run_step(
                "compile",
                build_input.hash_inputs(),
                lambda: self.builder.build(build_input),
                lambda d: d.binaries,
                handed_off=(TestSuiteError,),
            )
        except TestSuiteError:
            self._transition("test", StepState.RUNNING)
            self._transition("test", StepState.FAILED)
            raise
        if derivation.tests_ran:
            self._transition("test", StepState.RUNNING)
            self._transition("test", StepState.PASSED)
        else:
            self._transition("test", StepState.SKIPPED)
        return derivation

    def build_package(
        self,
        identity: PackageIdentity,
        flags: BuildFlags | None = None,
        binaries: list[str] | None = None,
    ) -> Derivation:
        """source_filter -> resolve_lock -> compile -> test."""
        self.reset()
        return self._compile(self.prepare(identity, flags, binaries))

    def build_image(
        self,
        identity: PackageIdentity,
        binary: str | None = None,
        flags: BuildFlags | None = None,
    ) -> ContainerImage:
        """The full chain, ending with image assembly for *binary*."""
        self.reset()
        binary = binary or self.settings.default_binary
        build_input = self.prepare(identity, flags)
        derivation = self._compile(build_input)
        return self._run_step(
            "image",
            {"derivation": derivation.derivation_hash, "binary": binary},
            lambda: self.assembler.assemble(build_input, binary),
            lambda img: img.image_digest,
        )

    def compose_environment(
        self, identity: PackageIdentity, flags: BuildFlags | None = None
    ) -> DevEnvironment:
        return self.composer.compose(self.collect_input(identity, flags))

    def evaluate(
        self,
        identity: PackageIdentity,
        flags: BuildFlags | None = None,
        binary: str | None = None,
    ) -> OutputRegistry:
        """Build the package, compose the dev shell and publish the registry.

        The registry file is written only after all three entries resolve.
        """
        self.reset()
        build_input = self.prepare(identity, flags)
        derivation = self._compile(build_input)
        environment = self.composer.compose(build_input)
        registry = OutputRegistry.evaluate(
            derivation, environment, binary or self.settings.default_binary
        )
        registry.save(self.settings.registry_path)
        return registry

    def run_app(self, args: Sequence[str] = (), runner: Runner = _subprocess_runner) -> int:
        """Execute the registered ``apps.default`` program directly."""
        registry = OutputRegistry.load(self.settings.registry_path)
        program = registry[APP_KEY].program
        if not Path(program).is_file():
            raise ReproBuildError(f"Registered app {program} no longer exists; rebuild first")
        return runner([program, *args], dict(os.environ), Path(self.settings.workspace_root))

    def enter_environment(
        self,
        identity: PackageIdentity,
        runner: Runner = _subprocess_runner,
        shell: str | None = None,
    ) -> int:
        """Provision the dev environment's hooks, then start a shell in it."""
        return self.composer.enter(self.compose_environment(identity), runner, shell)
