"""统一异常体系

所有业务异常继承 BrewkitError，替代散落的 ValueError / RuntimeError。
CLI 层可据此输出友好提示并映射退出码；编排器据此区分
"规划期错误"（整体中止）和"节点级错误"（写入报告）。
"""

from __future__ import annotations


class BrewkitError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(BrewkitError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(BrewkitError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ExecutionError(BrewkitError):
    """外部命令执行失败"""

    code = "EXECUTION_ERROR"


# =========================================================================
# 规划期错误: 依赖图不完整时不执行任何节点
# =========================================================================


class FormulaNotFound(BrewkitError):
    """依赖名在配方目录中不存在"""

    code = "FORMULA_NOT_FOUND"

    def __init__(self, name: str, required_by: str = "") -> None:
        by = f" (被 {required_by} 依赖)" if required_by else ""
        super().__init__(f"配方 '{name}' 不存在{by}")
        self.name = name
        self.required_by = required_by


class CyclicDependency(BrewkitError):
    """依赖图存在环，path 为环上的节点序列（首尾相同）"""

    code = "CYCLIC_DEPENDENCY"

    def __init__(self, path: list[str]) -> None:
        super().__init__(f"检测到循环依赖: {' -> '.join(path)}")
        self.path = list(path)


class DependencyError(BrewkitError):
    """依赖关系不满足（如卸载仍被依赖的配方）"""

    code = "DEPENDENCY_ERROR"


# =========================================================================
# 节点级错误: 由编排器捕获并写入报告
# =========================================================================


class IntegrityMismatch(BrewkitError):
    """下载内容的校验和与声明不一致"""

    code = "INTEGRITY_MISMATCH"

    def __init__(self, url: str, expected: str, actual: str) -> None:
        super().__init__(
            f"校验和不匹配 {url}: 期望 {expected}, 实际 {actual}",
        )
        self.url = url
        self.expected = expected
        self.actual = actual


class FetchUnavailable(BrewkitError):
    """传输层失败（网络错误、超时、源不存在）"""

    code = "FETCH_UNAVAILABLE"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"下载失败: {url} - {reason}")
        self.url = url
        self.reason = reason


class BuildStepFailed(BrewkitError):
    """构建步骤失败，step_index 从 1 开始计数"""

    code = "BUILD_STEP_FAILED"

    def __init__(self, step_index: int, exit_status: int, output: str) -> None:
        super().__init__(
            f"构建步骤 #{step_index} 失败 (rc={exit_status})",
        )
        self.step_index = step_index
        self.exit_status = exit_status
        self.output = output


class PostInstallTestFailed(BrewkitError):
    """安装后冒烟测试失败 — 软错误，不回滚安装"""

    code = "POST_INSTALL_TEST_FAILED"

    def __init__(self, name: str, reason: str, output: str = "") -> None:
        super().__init__(f"{name} 安装后测试失败: {reason}")
        self.name = name
        self.reason = reason
        self.output = output


class ReceiptCorrupt(BrewkitError):
    """安装回执文件无法读取或格式错误"""

    code = "RECEIPT_CORRUPT"


class InstallCancelled(BrewkitError):
    """安装被取消"""

    code = "INSTALL_CANCELLED"


class SourceUnpackFailed(BrewkitError):
    """主源码无法解包到构建目录（损坏的归档、越界成员等）"""

    code = "SOURCE_UNPACK_FAILED"

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"源码解包失败: {source} - {reason}")
        self.source = source
        self.reason = reason


class NodeCrashed(BrewkitError):
    """节点执行中出现的非预期异常，由编排器转为失败结局"""

    code = "NODE_CRASHED"
