"""安装编排模块

拆分说明:
- models.py: 安装选项
- orchestrator.py: 解析 / 拉取 / 构建 / 回执的组合
"""

from brewkit.services.orchestrator.models import BEST_EFFORT, FAIL_FAST, InstallOptions
from brewkit.services.orchestrator.orchestrator import Orchestrator

__all__ = [
    "BEST_EFFORT",
    "FAIL_FAST",
    "InstallOptions",
    "Orchestrator",
]
