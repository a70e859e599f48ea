"""Adversarial tests — attempts to rewrite registered outputs.

These tests verify that:
1. A registered key cannot be re-registered, even with equal content
2. The read-only view rejects assignment and deletion
3. A registry file edited to point elsewhere is caught before running
"""

from __future__ import annotations

import json

import pytest

from reprobuild.core.pipeline import Pipeline
from reprobuild.errors import RegistryError, ReproBuildError
from reprobuild.models.identity import PackageIdentity
from reprobuild.models.registry import APP_KEY, PACKAGE_KEY


class TestRegistryMutation:
    def test_same_entry_twice(self, pipeline: Pipeline, identity: PackageIdentity):
        registry = pipeline.evaluate(identity)
        with pytest.raises(RegistryError):
            registry.register(registry[PACKAGE_KEY])

    def test_view_rejects_delete(self, pipeline: Pipeline, identity: PackageIdentity):
        view = pipeline.evaluate(identity).as_mapping()
        with pytest.raises(TypeError):
            del view[APP_KEY]  # type: ignore[attr-defined]

    def test_registry_has_no_setitem(self, pipeline: Pipeline, identity: PackageIdentity):
        registry = pipeline.evaluate(identity)
        with pytest.raises(TypeError):
            registry[APP_KEY] = registry[PACKAGE_KEY]  # type: ignore[index]

    def test_duplicate_key_in_file_rejected_on_load(self, pipeline: Pipeline, identity: PackageIdentity, settings):
        pipeline.evaluate(identity)
        data = json.loads(settings.registry_path.read_text(encoding="utf-8"))
        data["apps.alias"] = dict(data[APP_KEY])  # same key inside the entry
        settings.registry_path.write_text(json.dumps(data), encoding="utf-8")
        with pytest.raises(RegistryError, match="already registered"):
            pipeline.run_app([], runner=lambda argv, env, cwd: 0)

    def test_redirected_app_to_missing_program(self, pipeline: Pipeline, identity: PackageIdentity, settings, tmp_path):
        pipeline.evaluate(identity)
        data = json.loads(settings.registry_path.read_text(encoding="utf-8"))
        data[APP_KEY]["program"] = str(tmp_path / "nowhere" / "bin" / "svc-server")
        settings.registry_path.write_text(json.dumps(data), encoding="utf-8")
        with pytest.raises(ReproBuildError, match="no longer exists"):
            pipeline.run_app([], runner=lambda argv, env, cwd: 0)
