"""Shell 命令执行工具 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，方便测试替换。
命令一律以参数列表执行（不经过 /bin/sh），环境变量由调用方显式传入。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from brewkit.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)

# 可执行文件不存在时沿用 shell 的约定退出码
COMMAND_NOT_FOUND = 127


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout + stderr，等价于 2>&1"""
        if self.stdout and self.stderr:
            sep = "" if self.stdout.endswith("\n") else "\n"
            return self.stdout + sep + self.stderr
        return self.stdout or self.stderr


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用

    超时时应抛出 subprocess.TimeoutExpired，由调用方决定如何归类。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        args = shlex.split(cmd) if isinstance(cmd, str) else cmd
        try:
            r = subprocess.run(
                args, capture_output=True, text=True,
                cwd=cwd, env=env, check=False, timeout=timeout,
            )
        except FileNotFoundError as e:
            return CommandResult(
                returncode=COMMAND_NOT_FOUND, stdout="", stderr=str(e),
            )
        except PermissionError as e:
            return CommandResult(returncode=126, stdout="", stderr=str(e))
        return CommandResult(
            returncode=r.returncode, stdout=r.stdout, stderr=r.stderr,
        )


# =========================================================================
# 便捷函数
# =========================================================================

def run_cmd(
    cmd: str | list[str], *, cwd: str = ".",
    env: dict[str, str] | None = None,
    timeout: float | None = None,
    label: str = "cmd",
    executor: CommandExecutor | None = None,
) -> CommandResult:
    """执行命令，失败抛 ExecutionError

    Args:
        cmd: 命令字符串或参数列表
        cwd: 工作目录
        env: 环境变量（不传则继承当前进程）
        timeout: 超时秒数
        label: 日志标签
    """
    logger.info("  %s: %s (cwd=%s)", label, cmd, cwd)
    runner = executor or LocalExecutor()
    try:
        r = runner.execute(cmd, cwd=cwd, env=env, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise ExecutionError(f"{label}超时 ({e.timeout}s)") from e
    if not r.success:
        raise ExecutionError(f"{label}失败 (rc={r.returncode}): {r.output[:500]}")
    return r
