"""构建执行器单元测试 — 使用真实的 sh/coreutils 命令"""

from __future__ import annotations

import io
import tarfile
import threading
from pathlib import Path

import pytest

from brewkit.core.exceptions import (
    BuildStepFailed,
    InstallCancelled,
    PostInstallTestFailed,
    SourceUnpackFailed,
)
from brewkit.core.formula.catalog import formula_from_dict
from brewkit.services.build.executor import TIMEOUT_EXIT_STATUS, BuildExecutor


def _formula(steps: list, **kw):
    return formula_from_dict({"name": "app", "version": "1.0", "build_steps": steps, **kw})


@pytest.fixture()
def tmp_root(tmp_path: Path) -> Path:
    return tmp_path / "tmp"


@pytest.fixture()
def builder(tmp_root: Path) -> BuildExecutor:
    return BuildExecutor(tmp_root=tmp_root, step_timeout=30)


class TestBuildSteps:
    def test_steps_install_into_prefix(self, tmp_path: Path, builder: BuildExecutor) -> None:
        f = _formula([
            "mkdir -p {bin}",
            "sh -c 'echo hi > {bin}/app'",
        ])
        result = builder.build(f, {}, tmp_path / "root")
        prefix = tmp_path / "root" / "Cellar" / "app" / "1.0"
        assert result.prefix == prefix
        assert (prefix / "bin" / "app").read_text() == "hi\n"
        assert result.installed_paths == [str(prefix)]
        assert result.warnings == []

    def test_failing_step_rolls_back(
        self, tmp_path: Path, tmp_root: Path, builder: BuildExecutor,
    ) -> None:
        f = _formula([
            "touch {prefix}/partial",
            "sh -c 'echo broken >&2; exit 3'",
            "touch {prefix}/never",
        ])
        with pytest.raises(BuildStepFailed) as exc:
            builder.build(f, {}, tmp_path / "root")
        assert exc.value.step_index == 2
        assert exc.value.exit_status == 3
        assert "broken" in exc.value.output
        assert not (tmp_path / "root" / "Cellar" / "app").exists()
        assert list(tmp_root.iterdir()) == []

    def test_existing_prefix_kept_on_failure(self, tmp_path: Path, builder: BuildExecutor) -> None:
        prefix = tmp_path / "root" / "Cellar" / "app" / "1.0"
        prefix.mkdir(parents=True)
        (prefix / "old").write_text("keep")
        with pytest.raises(BuildStepFailed):
            builder.build(_formula(["false"]), {}, tmp_path / "root")
        assert (prefix / "old").read_text() == "keep"

    def test_new_etc_files_removed_on_failure(self, tmp_path: Path, builder: BuildExecutor) -> None:
        etc = tmp_path / "root" / "etc"
        etc.mkdir(parents=True)
        (etc / "existing.conf").write_text("x")
        f = _formula(["touch {etc}/app.conf", "false"])
        with pytest.raises(BuildStepFailed):
            builder.build(f, {}, tmp_path / "root")
        assert sorted(p.name for p in etc.iterdir()) == ["existing.conf"]

    def test_step_env_is_scoped(self, tmp_path: Path, builder: BuildExecutor) -> None:
        f = _formula([
            {"run": "sh -c 'echo $LIBTOOLIZE > {prefix}/first'", "env": {"LIBTOOLIZE": "glibtoolize"}},
            "sh -c 'echo \"[$LIBTOOLIZE]\" > {prefix}/second'",
        ])
        builder.base_env.pop("LIBTOOLIZE", None)
        result = builder.build(f, {}, tmp_path / "root")
        assert (result.prefix / "first").read_text() == "glibtoolize\n"
        assert (result.prefix / "second").read_text() == "[]\n"

    def test_env_values_expand_placeholders(self, tmp_path: Path, builder: BuildExecutor) -> None:
        f = _formula([
            {"run": "sh -c 'echo $TARGET > {prefix}/where'", "env": {"TARGET": "{etc}"}},
        ])
        result = builder.build(f, {}, tmp_path / "root")
        assert (result.prefix / "where").read_text().strip() == str(tmp_path / "root" / "etc")

    def test_resource_placeholder_and_etc_tracking(
        self, tmp_path: Path, builder: BuildExecutor,
    ) -> None:
        script = tmp_path / "downloads" / "vpnc-script"
        script.parent.mkdir()
        script.write_text("#!/bin/sh\n")
        f = _formula(
            ["install -m 0755 {resource:vpnc-script} {etc}/vpnc-script"],
            resources={"vpnc-script": {"url": "https://example.com/vpnc-script", "sha256": "c" * 64}},
        )
        result = builder.build(f, {"vpnc-script": script}, tmp_path / "root")
        installed = tmp_path / "root" / "etc" / "vpnc-script"
        assert installed.read_text() == "#!/bin/sh\n"
        assert installed.stat().st_mode & 0o777 == 0o755
        assert result.installed_paths == [str(result.prefix), str(installed)]

    def test_path_with_spaces_stays_one_argument(self, tmp_path: Path, builder: BuildExecutor) -> None:
        root = tmp_path / "install root"
        result = builder.build(_formula(["touch {prefix}/marker"]), {}, root)
        assert (result.prefix / "marker").exists()

    def test_timeout(self, tmp_path: Path, tmp_root: Path) -> None:
        builder = BuildExecutor(tmp_root=tmp_root, step_timeout=0.2)
        with pytest.raises(BuildStepFailed) as exc:
            builder.build(_formula(["sleep 5"]), {}, tmp_path / "root")
        assert exc.value.exit_status == TIMEOUT_EXIT_STATUS

    def test_cancelled_before_step(self, tmp_path: Path, builder: BuildExecutor) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(InstallCancelled):
            builder.build(_formula(["touch {prefix}/x"]), {}, tmp_path / "root", cancel=cancel)
        assert not (tmp_path / "root" / "Cellar" / "app").exists()


def _tar_bytes(members: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class TestSourceStaging:
    def _tarball(self, path: Path) -> Path:
        path.write_bytes(_tar_bytes({"app-1.0/hello.txt": b"hello from source\n"}))
        return path

    def test_tarball_single_top_dir(self, tmp_path: Path, builder: BuildExecutor) -> None:
        tarball = self._tarball(tmp_path / "app-1.0.tar.gz")
        f = _formula(["cp hello.txt {prefix}/hello.txt"])
        result = builder.build(f, {}, tmp_path / "root", source_path=tarball)
        assert (result.prefix / "hello.txt").read_text() == "hello from source\n"

    def test_directory_source(self, tmp_path: Path, builder: BuildExecutor) -> None:
        checkout = tmp_path / "checkout"
        checkout.mkdir()
        (checkout / "autogen.sh").write_text("echo generated > generated.txt\n")
        f = _formula(["sh autogen.sh", "cp generated.txt {prefix}/"])
        result = builder.build(f, {}, tmp_path / "root", source_path=checkout)
        assert (result.prefix / "generated.txt").read_text() == "generated\n"
        assert not (checkout / "generated.txt").exists()

    def test_member_outside_destination_rejected(
        self, tmp_path: Path, tmp_root: Path, builder: BuildExecutor,
    ) -> None:
        tarball = tmp_path / "evil.tar.gz"
        tarball.write_bytes(_tar_bytes({"../evil.txt": b"owned\n"}))
        with pytest.raises(SourceUnpackFailed, match="evil.tar.gz"):
            builder.build(_formula(["touch {prefix}/built"]), {}, tmp_path / "root", source_path=tarball)
        assert not (tmp_root / "evil.txt").exists()
        assert list(tmp_root.iterdir()) == []
        assert not (tmp_path / "root" / "Cellar" / "app").exists()

    def test_missing_source_path(self, tmp_path: Path, builder: BuildExecutor) -> None:
        with pytest.raises(SourceUnpackFailed):
            builder.build(_formula([]), {}, tmp_path / "root", source_path=tmp_path / "gone.tar.gz")
        assert not (tmp_path / "root" / "Cellar" / "app").exists()


class TestPostInstallTest:
    def test_match_passes(self, tmp_path: Path, builder: BuildExecutor) -> None:
        f = _formula(
            ["sh -c 'printf \"#!/bin/sh\\necho Cisco AnyConnect VPN\\n\" > {bin}/app'",
             "chmod +x {bin}/app"],
            test={"run": "{bin}/app --help", "match": "AnyConnect VPN"},
        )
        assert builder.build(f, {}, tmp_path / "root").warnings == []

    def test_failure_is_warning_without_rollback(
        self, tmp_path: Path, builder: BuildExecutor,
    ) -> None:
        f = _formula(["touch {prefix}/built"], test="false")
        result = builder.build(f, {}, tmp_path / "root")
        assert len(result.warnings) == 1
        assert isinstance(result.warnings[0], PostInstallTestFailed)
        assert (result.prefix / "built").exists()

    def test_match_mismatch(self, tmp_path: Path, builder: BuildExecutor) -> None:
        f = _formula([], test={"run": "echo something else", "match": "AnyConnect"})
        result = builder.build(f, {}, tmp_path / "root")
        assert "AnyConnect" in result.warnings[0].reason
