"""服务容器 — 统一依赖注入

CLI 通过 get_container() 获取服务，同一容器内的实例共享状态
（拉取器的哈希锁、回执存储的写锁等）。

依赖关系图（→ 表示依赖）:
  orchestrator → catalog, fetcher, executor, store

用法:
    container = ServiceContainer(Config.from_file("configs/default.yml"))
    report = container.orchestrator.install(["openconnect-keychain"])
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from brewkit.core.config import Config
    from brewkit.core.formula.catalog import FormulaCatalog
    from brewkit.core.formula.fetcher import ResourceFetcher
    from brewkit.core.receipts import InstallationStore
    from brewkit.services.build.executor import BuildExecutor
    from brewkit.services.orchestrator.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from brewkit.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    @property
    def catalog(self) -> FormulaCatalog:
        if "catalog" not in self._instances:
            from brewkit.core.formula.catalog import FormulaCatalog
            self._instances["catalog"] = FormulaCatalog.from_dir(self._config.catalog_dir)
        return self._instances["catalog"]  # type: ignore[return-value]

    @property
    def fetcher(self) -> ResourceFetcher:
        if "fetcher" not in self._instances:
            from brewkit.core.formula.fetcher import ResourceFetcher
            self._instances["fetcher"] = ResourceFetcher(
                cache_dir=self._config.cache_dir,
                timeout=self._config.fetch_timeout,
            )
        return self._instances["fetcher"]  # type: ignore[return-value]

    @property
    def executor(self) -> BuildExecutor:
        if "executor" not in self._instances:
            from brewkit.services.build.executor import BuildExecutor
            self._instances["executor"] = BuildExecutor(
                step_timeout=self._config.step_timeout,
                tmp_root=Path(self._config.root_dir) / "var" / "tmp",
            )
        return self._instances["executor"]  # type: ignore[return-value]

    @property
    def store(self) -> InstallationStore:
        if "store" not in self._instances:
            from brewkit.core.receipts import InstallationStore
            self._instances["store"] = InstallationStore(self._config.receipts_file)
        return self._instances["store"]  # type: ignore[return-value]

    @property
    def orchestrator(self) -> Orchestrator:
        if "orchestrator" not in self._instances:
            from brewkit.services.orchestrator.orchestrator import Orchestrator
            self._instances["orchestrator"] = Orchestrator(
                catalog=self.catalog,
                fetcher=self.fetcher,
                executor=self.executor,
                store=self.store,
                install_root=self._config.root_dir,
            )
        return self._instances["orchestrator"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
