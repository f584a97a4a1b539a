"""核心数据模型单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from brewkit.core.exceptions import ValidationError
from brewkit.core.models import (
    BuildStep,
    Dependency,
    DepKind,
    Formula,
    InstallPaths,
    InstallReport,
    NodeOutcome,
    OutcomeStatus,
    Receipt,
    Resource,
    Source,
    TestStep,
    VersionSpec,
)

SHA = "a" * 64


class TestVersionSpec:
    @pytest.mark.parametrize("text", ["1.2.3", "HEAD", "HEAD-devel"])
    def test_parse_str_roundtrip(self, text: str) -> None:
        assert str(VersionSpec.parse(text)) == text

    def test_head_with_branch(self) -> None:
        v = VersionSpec.parse("HEAD-devel")
        assert v.head is True
        assert v.branch == "devel"

    def test_pinned_requires_version(self) -> None:
        with pytest.raises(ValidationError, match="version"):
            VersionSpec()


class TestFormulaValidate:
    def _formula(self, **kw) -> Formula:
        base = {"name": "pkg", "version_spec": VersionSpec("1.0")}
        base.update(kw)
        return Formula(**base)

    def test_valid_formula(self) -> None:
        f = self._formula(
            resources=(Resource("conf", "https://example.com/conf", SHA),),
            build_steps=(BuildStep("cp {resource:conf} {etc}/conf"),),
        )
        f.validate()

    def test_undeclared_resource_reference(self) -> None:
        f = self._formula(build_steps=(BuildStep("cp {resource:missing} {etc}"),))
        with pytest.raises(ValidationError) as exc:
            f.validate()
        assert any("missing" in d for d in exc.value.details)

    def test_test_step_resource_reference_checked(self) -> None:
        f = self._formula(test_step=TestStep("sh {resource:helper}"))
        with pytest.raises(ValidationError, match="helper"):
            f.validate()

    def test_self_dependency(self) -> None:
        f = self._formula(dependencies=(Dependency("pkg"),))
        with pytest.raises(ValidationError, match="自身"):
            f.validate()

    def test_duplicate_dependency(self) -> None:
        f = self._formula(dependencies=(Dependency("a"), Dependency("a", DepKind.BUILD)))
        with pytest.raises(ValidationError, match="重复依赖"):
            f.validate()

    def test_pinned_source_requires_sha(self) -> None:
        f = self._formula(source=Source("https://example.com/pkg.tar.gz"))
        with pytest.raises(ValidationError, match="sha256"):
            f.validate()

    def test_head_source_without_sha_ok(self) -> None:
        f = self._formula(
            version_spec=VersionSpec(head=True),
            source=Source("https://example.com/pkg.git"),
        )
        f.validate()

    def test_empty_name(self) -> None:
        with pytest.raises(ValidationError, match="name"):
            self._formula(name="").validate()

    def test_edges_filter_optional(self) -> None:
        f = self._formula(dependencies=(
            Dependency("a"), Dependency("b", DepKind.OPTIONAL), Dependency("c", DepKind.BUILD),
        ))
        assert [d.name for d in f.edges()] == ["a", "c"]
        assert [d.name for d in f.edges({"b"})] == ["a", "b", "c"]


class TestInstallPaths:
    def test_layout(self, tmp_path: Path) -> None:
        f = Formula(name="pkg", version_spec=VersionSpec("2.1"))
        paths = InstallPaths.for_formula(tmp_path, f)
        assert paths.prefix == tmp_path / "Cellar" / "pkg" / "2.1"
        assert paths.bin == paths.prefix / "bin"
        assert paths.etc == tmp_path / "etc"
        assert paths.var == tmp_path / "var"
        assert set(paths.as_mapping()) == {"prefix", "bin", "etc", "var"}


class TestReceipt:
    def test_dict_roundtrip(self) -> None:
        r = Receipt(
            name="pkg", version_spec="HEAD-devel",
            installed_paths=["/x/Cellar/pkg/HEAD-devel"],
            timestamp=1700000000.25,
            build_options_used={"with": ["stoken"], "head": True},
        )
        assert Receipt.from_dict("pkg", r.to_dict()) == r


class TestInstallReport:
    def test_success_and_exit_code(self) -> None:
        report = InstallReport()
        report.add(NodeOutcome("a", OutcomeStatus.INSTALLED))
        report.add(NodeOutcome("b", OutcomeStatus.SKIPPED))
        assert report.success
        assert report.exit_code == 0

    def test_failure_exit_code(self) -> None:
        report = InstallReport()
        report.add(NodeOutcome("a", OutcomeStatus.FAILED, reason="boom"))
        assert not report.success
        assert report.exit_code == 1
        assert report.by_status(OutcomeStatus.FAILED) == ["a"]

    def test_aborted_is_not_success(self) -> None:
        report = InstallReport(aborted=["b"])
        assert report.exit_code == 1

    def test_to_dict(self) -> None:
        report = InstallReport(policy="best_effort")
        report.add(NodeOutcome(
            "a", OutcomeStatus.FAILED, reason="x", step_index=2, output="log",
        ))
        d = report.to_dict()
        assert d["policy"] == "best_effort"
        assert d["outcomes"][0] == {
            "name": "a", "status": "failed", "reason": "x",
            "step_index": 2, "output": "log",
        }
