"""资源拉取器

职责:
- 按内容寻址缓存下载资源（缓存键是 sha256 而不是 URL）
- 校验和验证，不匹配的内容绝不进入缓存
- HEAD 主源码跳过校验，每次重新拉取（git 仓库走 clone / fetch）
- 同一哈希的并发拉取合并为一次下载（按哈希加锁）

缓存布局:
    <cache_dir>/sha256/<hash>/<文件名>
    <cache_dir>/head/<url 摘要>/...
    <cache_dir>/tmp/              下载中的临时文件
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
import threading
import urllib.error
import urllib.request
from pathlib import Path
from typing import Protocol

from brewkit.core.exceptions import (
    ExecutionError,
    FetchUnavailable,
    IntegrityMismatch,
    ValidationError,
)
from brewkit.core.models import Formula
from brewkit.utils.net import url_basename, validate_url_scheme
from brewkit.utils.shell import CommandExecutor, run_cmd

logger = logging.getLogger(__name__)

_HEX = frozenset("0123456789abcdef")


def sha256_file(path: Path) -> str:
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def _is_git_url(url: str) -> bool:
    return url.endswith(".git") or url.startswith("git://")


# =========================================================================
# 传输层
# =========================================================================


class Transport(Protocol):
    """传输层协议：把 url 的内容写到 dest，失败抛 FetchUnavailable"""

    def download(self, url: str, dest: Path, *, timeout: float | None = None) -> None:
        ...


class UrllibTransport:
    """基于 urllib 的默认传输实现"""

    def download(self, url: str, dest: Path, *, timeout: float | None = None) -> None:
        logger.info("  下载: %s", url)
        try:
            with urllib.request.urlopen(url, timeout=timeout) as resp, open(dest, "wb") as f:  # nosec B310
                shutil.copyfileobj(resp, f)
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise FetchUnavailable(url, str(e)) from e


# =========================================================================
# 拉取器
# =========================================================================


class ResourceFetcher:
    """内容寻址的资源拉取器（线程安全）"""

    def __init__(
        self,
        cache_dir: str | Path,
        transport: Transport | None = None,
        *,
        timeout: float | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self._transport = transport or UrllibTransport()
        self._executor = executor
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def _hash_dir(self, digest: str) -> Path:
        return self.cache_dir / "sha256" / digest

    def _tmp_dir(self) -> Path:
        d = self.cache_dir / "tmp"
        d.mkdir(parents=True, exist_ok=True)
        return d

    # ------------------------------------------------------------------
    # 固定哈希资源
    # ------------------------------------------------------------------

    def cached_path(self, expected_hash: str) -> Path | None:
        """缓存中已有该哈希的内容时返回其路径"""
        d = self._hash_dir(expected_hash.lower())
        if not d.is_dir():
            return None
        for f in sorted(d.iterdir()):
            if f.is_file():
                return f
        return None

    def fetch(self, url: str, expected_hash: str | None) -> Path:
        """拉取资源，返回本地路径

        expected_hash 为空表示 HEAD 源码，跳过校验。
        """
        if not expected_hash:
            return self.fetch_head(url)

        digest = expected_hash.lower()
        if len(digest) != 64 or not _HEX.issuperset(digest):
            raise ValidationError(f"无效的 sha256: {expected_hash}")

        with self._lock_for(digest):
            hit = self.cached_path(digest)
            if hit is not None:
                logger.info("  缓存命中: %s -> %s", url_basename(url), hit)
                return hit
            return self._download_verified(url, digest)

    def _download_verified(self, url: str, digest: str) -> Path:
        validate_url_scheme(url, context="fetch")
        fd, tmp = tempfile.mkstemp(dir=str(self._tmp_dir()), suffix=".part")
        os.close(fd)
        tmp_path = Path(tmp)
        try:
            self._transport.download(url, tmp_path, timeout=self.timeout)
            actual = sha256_file(tmp_path)
            if actual != digest:
                raise IntegrityMismatch(url, digest, actual)
            dest = self._hash_dir(digest) / url_basename(url)
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(tmp_path, dest)
        finally:
            tmp_path.unlink(missing_ok=True)
        logger.info("  校验和通过: %s", dest.name)
        return dest

    # ------------------------------------------------------------------
    # HEAD 源码
    # ------------------------------------------------------------------

    def fetch_head(self, url: str, branch: str = "") -> Path:
        """拉取分支跟踪的主源码，不校验哈希、不复用旧内容"""
        key = hashlib.sha256(f"{url}#{branch}".encode()).hexdigest()[:16]
        dest_dir = self.cache_dir / "head" / key
        with self._lock_for(f"head:{key}"):
            if _is_git_url(url):
                return self._git_checkout(url, branch, dest_dir)

            validate_url_scheme(url, context="fetch head")
            fd, tmp = tempfile.mkstemp(dir=str(self._tmp_dir()), suffix=".part")
            os.close(fd)
            tmp_path = Path(tmp)
            try:
                self._transport.download(url, tmp_path, timeout=self.timeout)
                dest = dest_dir / url_basename(url)
                dest_dir.mkdir(parents=True, exist_ok=True)
                os.replace(tmp_path, dest)
            finally:
                tmp_path.unlink(missing_ok=True)
            logger.info("  HEAD 已拉取: %s -> %s", url, dest)
            return dest

    def _git_checkout(self, url: str, branch: str, dest: Path) -> Path:
        """clone 或 fetch+reset 到分支最新提交"""
        ref = branch or "HEAD"
        try:
            if (dest / ".git").exists():
                logger.info("  更新仓库: %s@%s", url, ref)
                run_cmd(
                    ["git", "fetch", "--depth", "1", "origin", ref],
                    cwd=str(dest), timeout=self.timeout,
                    label="git fetch", executor=self._executor,
                )
                run_cmd(
                    ["git", "reset", "--hard", "FETCH_HEAD"],
                    cwd=str(dest), label="git reset", executor=self._executor,
                )
            else:
                logger.info("  克隆仓库: %s@%s -> %s", url, ref, dest)
                shutil.rmtree(dest, ignore_errors=True)
                dest.parent.mkdir(parents=True, exist_ok=True)
                args = ["git", "clone", "--depth", "1"]
                if branch:
                    args += ["--branch", branch]
                run_cmd(
                    [*args, url, str(dest)], timeout=self.timeout,
                    label="git clone", executor=self._executor,
                )
        except ExecutionError as e:
            raise FetchUnavailable(url, str(e)) from e
        return dest

    # ------------------------------------------------------------------
    # 配方级拉取
    # ------------------------------------------------------------------

    def fetch_formula(self, formula: Formula) -> tuple[Path | None, dict[str, Path]]:
        """拉取配方的主源码和全部资源，返回 (源码路径, {资源名: 路径})"""
        source_path: Path | None = None
        if formula.source is not None:
            if formula.is_head:
                source_path = self.fetch_head(formula.source.url, formula.version_spec.branch)
            else:
                source_path = self.fetch(formula.source.url, formula.source.sha256)
        resources = {r.name: self.fetch(r.url, r.sha256) for r in formula.resources}
        return source_path, resources

    def clean(self) -> int:
        """清理下载中断遗留的临时文件，返回清理数量"""
        tmp_dir = self.cache_dir / "tmp"
        if not tmp_dir.exists():
            return 0
        removed = 0
        for f in tmp_dir.glob("*.part"):
            f.unlink(missing_ok=True)
            removed += 1
        logger.info("已清理 %d 个临时文件", removed)
        return removed
