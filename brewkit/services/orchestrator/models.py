"""编排器数据模型

- InstallOptions: 一次安装调用的选项
"""

from __future__ import annotations

from dataclasses import dataclass, field

from brewkit.core.config import FAILURE_POLICIES
from brewkit.core.exceptions import ValidationError

FAIL_FAST = "fail_fast"
BEST_EFFORT = "best_effort"


@dataclass
class InstallOptions:
    """安装选项

    policy:
        fail_fast   - 首个失败后不再启动新节点（默认）
        best_effort - 继续执行无关子树，失败节点的下游标记为失败
    include_optional: 需要一并安装的 optional 依赖名
    jobs: >1 时并行构建互不依赖的节点
    force: 请求的配方即使已安装也重新构建
    """

    policy: str = FAIL_FAST
    include_optional: frozenset[str] = field(default_factory=frozenset)
    jobs: int = 1
    force: bool = False

    def __post_init__(self) -> None:
        if self.policy not in FAILURE_POLICIES:
            raise ValidationError(
                f"未知的失败策略: {self.policy}，可选: {', '.join(FAILURE_POLICIES)}"
            )
        if self.jobs < 1:
            raise ValidationError(f"jobs 必须 >= 1: {self.jobs}")
        self.include_optional = frozenset(self.include_optional)
