"""测试公共 fixture"""

from __future__ import annotations

import hashlib
import threading
import time
from pathlib import Path

import pytest

from brewkit.core.exceptions import FetchUnavailable
from brewkit.utils.shell import CommandResult, LocalExecutor


class FakeTransport:
    """内存传输层：记录每次下载调用，未登记的 URL 视为不可达"""

    def __init__(self, delay: float = 0.0) -> None:
        self.payloads: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.delay = delay
        self._lock = threading.Lock()

    def add(self, url: str, content: bytes) -> str:
        """登记 URL，返回内容的 sha256"""
        self.payloads[url] = content
        return hashlib.sha256(content).hexdigest()

    def download(self, url: str, dest: Path, *, timeout: float | None = None) -> None:
        with self._lock:
            self.calls.append(url)
        if self.delay:
            time.sleep(self.delay)
        if url not in self.payloads:
            raise FetchUnavailable(url, "404 Not Found")
        dest.write_bytes(self.payloads[url])


class RecordingExecutor(LocalExecutor):
    """真实执行命令，同时记录参数列表"""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def execute(self, cmd, *, cwd=".", env=None, timeout=None) -> CommandResult:  # type: ignore[override]
        with self._lock:
            self.calls.append(list(cmd))
        return super().execute(cmd, cwd=cwd, env=env, timeout=timeout)


@pytest.fixture()
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def recording_executor() -> RecordingExecutor:
    return RecordingExecutor()
