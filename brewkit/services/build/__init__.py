"""构建服务模块

- executor.py: 在隔离的临时目录中执行配方构建步骤
"""

from brewkit.services.build.executor import BuildExecutor

__all__ = ["BuildExecutor"]
