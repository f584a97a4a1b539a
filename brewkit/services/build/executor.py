"""构建执行器

职责:
- 申请临时构建目录，任何退出路径（成功、失败、取消）都会清理
- 解包主源码到构建目录
- 顺序执行构建步骤，首个失败的步骤中止后续步骤
- 运行安装后测试（软失败，不回滚）
- 硬失败时回滚本次写入的 prefix 和 etc 文件

步骤命令先 shlex.split 再逐个参数替换占位符，
路径里含空格也不会被拆开；环境变量只对当前步骤生效。
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess
import tarfile
import tempfile
import threading
import time
import zipfile
from pathlib import Path

from brewkit.core.exceptions import (
    BuildStepFailed,
    InstallCancelled,
    PostInstallTestFailed,
    SourceUnpackFailed,
    ValidationError,
)
from brewkit.core.models import (
    PLACEHOLDER_RE,
    Formula,
    InstallPaths,
    InstallResult,
)
from brewkit.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)

# 报告中保留的输出尾部长度
MAX_CAPTURED_OUTPUT = 8000
TIMEOUT_EXIT_STATUS = -1


def _tail(text: str | bytes | None) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-MAX_CAPTURED_OUTPUT:]


def _snapshot(root: Path) -> set[Path]:
    if not root.is_dir():
        return set()
    return {p for p in root.rglob("*") if p.is_file() or p.is_symlink()}


class BuildExecutor:
    """构建执行器"""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        *,
        step_timeout: float | None = None,
        base_env: dict[str, str] | None = None,
        tmp_root: str | Path | None = None,
    ) -> None:
        self._executor = executor or LocalExecutor()
        self.step_timeout = step_timeout
        self.base_env = dict(base_env) if base_env is not None else dict(os.environ)
        self.tmp_root = str(tmp_root) if tmp_root else None
        if self.tmp_root:
            Path(self.tmp_root).mkdir(parents=True, exist_ok=True)

    def build(
        self,
        formula: Formula,
        resource_paths: dict[str, Path],
        install_root: str | Path,
        *,
        source_path: Path | None = None,
        cancel: threading.Event | None = None,
    ) -> InstallResult:
        """构建并安装单个配方

        Raises:
            BuildStepFailed: 任一构建步骤失败（已回滚）
            InstallCancelled: 构建过程中被取消（已回滚）
            SourceUnpackFailed: 源码无法解包（已回滚）
        """
        paths = InstallPaths.for_formula(Path(install_root), formula)
        etc_before = _snapshot(paths.etc)
        prefix_existed = paths.prefix.exists()
        start = time.monotonic()

        with tempfile.TemporaryDirectory(
            prefix=f"brewkit-{formula.name}-", dir=self.tmp_root,
        ) as tmp:
            work = Path(tmp)
            logger.info("开始构建: %s@%s (tmp=%s)", formula.name, formula.version_spec, work)
            try:
                paths.ensure()
                cwd = self._stage_source(source_path, work)
                mapping = {**paths.as_mapping(), "source": str(cwd)}
                total = len(formula.build_steps)
                for idx, step in enumerate(formula.build_steps, start=1):
                    if cancel is not None and cancel.is_set():
                        raise InstallCancelled(f"{formula.name} 在步骤 #{idx} 前被取消")
                    args = self._expand_args(step.command, mapping, resource_paths)
                    env = {
                        **self.base_env,
                        **{k: self._expand(v, mapping, resource_paths) for k, v in step.env.items()},
                    }
                    logger.info("  [%s] 步骤 %d/%d: %s", formula.name, idx, total, shlex.join(args))
                    self._run_step(idx, args, cwd, env)
            except BaseException:
                self._rollback(paths, etc_before, prefix_existed)
                raise

            warnings = self._run_test(formula, cwd, mapping, resource_paths)

        installed = [str(paths.prefix)]
        installed += sorted(str(p) for p in _snapshot(paths.etc) - etc_before)
        duration = time.monotonic() - start
        logger.info("构建完成: %s (%.1fs)", formula.name, duration)
        return InstallResult(
            name=formula.name, prefix=paths.prefix,
            installed_paths=installed, duration=duration, warnings=warnings,
        )

    # ------------------------------------------------------------------
    # 步骤执行
    # ------------------------------------------------------------------

    @staticmethod
    def _expand(text: str, mapping: dict[str, str], resources: dict[str, Path]) -> str:
        def repl(m: re.Match[str]) -> str:
            key = m.group(1)
            if key.startswith("resource:"):
                res = key.split(":", 1)[1]
                if res not in resources:
                    raise ValidationError(f"资源未拉取: {res}")
                return str(resources[res])
            return mapping[key]
        return PLACEHOLDER_RE.sub(repl, text)

    def _expand_args(
        self, command: str, mapping: dict[str, str], resources: dict[str, Path],
    ) -> list[str]:
        return [self._expand(tok, mapping, resources) for tok in shlex.split(command)]

    def _run_step(self, idx: int, args: list[str], cwd: Path, env: dict[str, str]) -> None:
        if not args:
            return
        try:
            r = self._executor.execute(
                args, cwd=str(cwd), env=env, timeout=self.step_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise BuildStepFailed(
                idx, TIMEOUT_EXIT_STATUS,
                f"超时 ({self.step_timeout}s)\n{_tail(e.output)}",
            ) from e
        if not r.success:
            logger.error("  步骤 #%d 失败 (rc=%d)", idx, r.returncode)
            raise BuildStepFailed(idx, r.returncode, _tail(r.output))
        if r.output:
            logger.debug("  步骤 #%d 输出:\n%s", idx, _tail(r.output))

    def _run_test(
        self, formula: Formula, cwd: Path,
        mapping: dict[str, str], resources: dict[str, Path],
    ) -> list[PostInstallTestFailed]:
        test = formula.test_step
        if test is None:
            return []
        args = self._expand_args(test.command, mapping, resources)
        logger.info("  [%s] 安装后测试: %s", formula.name, shlex.join(args))
        try:
            r = self._executor.execute(
                args, cwd=str(cwd), env=dict(self.base_env), timeout=self.step_timeout,
            )
        except subprocess.TimeoutExpired as e:
            return [PostInstallTestFailed(formula.name, "测试超时", _tail(e.output))]

        if test.match:
            if re.search(test.match, r.output):
                return []
            failure = PostInstallTestFailed(
                formula.name, f"输出不匹配 /{test.match}/", _tail(r.output),
            )
        elif r.success:
            return []
        else:
            failure = PostInstallTestFailed(
                formula.name, f"退出码 {r.returncode}", _tail(r.output),
            )
        logger.warning("%s", failure)
        return [failure]

    # ------------------------------------------------------------------
    # 源码与回滚
    # ------------------------------------------------------------------

    @staticmethod
    def _stage_source(source_path: Path | None, work: Path) -> Path:
        """把主源码放进构建目录，返回步骤的工作目录

        归档只有一个顶层目录时直接进入该目录。
        """
        if source_path is None:
            return work
        try:
            if source_path.is_dir():
                shutil.copytree(source_path, work, symlinks=True, dirs_exist_ok=True)
                return work
            if tarfile.is_tarfile(source_path):
                with tarfile.open(source_path) as tar:
                    tar.extractall(work, filter="data")
            elif zipfile.is_zipfile(source_path):
                with zipfile.ZipFile(source_path) as zf:
                    zf.extractall(work)
            else:
                shutil.copy2(source_path, work / source_path.name)
                return work
        except (tarfile.TarError, zipfile.BadZipFile, shutil.Error, OSError, EOFError) as e:
            raise SourceUnpackFailed(source_path.name, str(e)) from e
        entries = [p for p in work.iterdir() if not p.name.startswith(".")]
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return work

    @staticmethod
    def _rollback(paths: InstallPaths, etc_before: set[Path], prefix_existed: bool) -> None:
        for p in _snapshot(paths.etc) - etc_before:
            p.unlink(missing_ok=True)
        if not prefix_existed and paths.prefix.exists():
            shutil.rmtree(paths.prefix, ignore_errors=True)
            try:
                paths.prefix.parent.rmdir()
            except OSError:
                pass
        logger.info("已回滚: %s", paths.prefix)
