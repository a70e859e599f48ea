"""Tests for the test suite gate."""

from __future__ import annotations

from pathlib import Path

import pytest

from reprobuild.core.test_gate import TestGate
from reprobuild.errors import TestDependencyUnavailableError, TestSuiteError
from reprobuild.models.build import BuildFlags

ENABLED = BuildFlags(run_tests=True)


class TestSuiteGate:
    def test_disabled_skips_every_suite(self, make_compiler, tmp_path: Path):
        compiler = make_compiler()
        assert TestGate(compiler).run(BuildFlags(), tmp_path, {}) is False
        assert compiler.test_calls == 0

    def test_enabled_passing_suite(self, make_compiler, tmp_path: Path):
        compiler = make_compiler()
        assert TestGate(compiler).run(ENABLED, tmp_path, {}) is True
        assert compiler.test_calls == 1

    def test_failing_suite(self, make_compiler, tmp_path: Path):
        compiler = make_compiler(test_result=(101, "test api::tests::list ... FAILED"))
        with pytest.raises(TestSuiteError, match="exit code 101") as excinfo:
            TestGate(compiler).run(ENABLED, tmp_path, {})
        assert excinfo.value.returncode == 101
        assert "api::tests::list" in excinfo.value.output
        assert not isinstance(excinfo.value, TestDependencyUnavailableError)

    @pytest.mark.parametrize(
        "output",
        [
            "thread 'main' panicked at 'called `Result::unwrap()`: PoolTimedOut'",
            "error: failed to connect to setup test database",
            "Connection refused (os error 111)",
        ],
    )
    def test_live_resource_failure(self, make_compiler, tmp_path: Path, output: str):
        compiler = make_compiler(test_result=(101, output))
        with pytest.raises(TestDependencyUnavailableError):
            TestGate(compiler).run(ENABLED, tmp_path, {})
