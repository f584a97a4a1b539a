"""集中配置管理

提供统一的配置入口，支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

import yaml

from brewkit.core.exceptions import ConfigError
from brewkit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

FAILURE_POLICIES = ("fail_fast", "best_effort")


@dataclass
class Config:
    """全局配置"""

    # 目录
    catalog_dir: str = "formulae"
    root_dir: str = "local"            # 安装根: Cellar/ etc/ var/
    cache_dir: str = "cache/downloads"
    receipts_file: str = "local/var/brewkit/receipts.yml"

    # 执行
    failure_policy: str = "fail_fast"
    max_workers: int = 1
    fetch_timeout: float = 300.0
    step_timeout: float | None = None  # None 表示不限时

    # 放不到字段里的配置项
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.failure_policy not in FAILURE_POLICIES:
            raise ConfigError(
                f"failure_policy 无效: {self.failure_policy}，"
                f"可选: {', '.join(FAILURE_POLICIES)}"
            )
        if self.max_workers < 1:
            raise ConfigError(f"max_workers 必须 >= 1: {self.max_workers}")

    @classmethod
    def from_file(cls, path: str = "configs/default.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path, strict=True)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"配置文件无效: {path} - {e}") from e
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# 全局单例，由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "configs/default.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current


def reset_config() -> None:
    """清除全局配置（仅用于测试）"""
    global _current  # noqa: PLW0603
    _current = None
