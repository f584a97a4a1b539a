"""核心数据模型

所有核心数据类集中定义，解析器 / 拉取器 / 构建器 / 编排器统一从此处导入。

- 配方 (Formula) 及其组成部分: 只读输入
- 安装计划 (InstallPlan): 派生、一次性，由编排器持有
- 安装回执 (Receipt): 持久化记录，由 InstallationStore 独占
- 安装报告 (InstallReport): 每个节点的结局
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from brewkit.core.exceptions import PostInstallTestFailed, ValidationError

HEAD = "HEAD"

# 构建步骤中可用的路径占位符
PATH_PLACEHOLDERS = ("prefix", "bin", "etc", "var")
PLACEHOLDER_RE = re.compile(r"\{(prefix|bin|etc|var|source|resource:[^{}]+)\}")
RESOURCE_REF_RE = re.compile(r"\{resource:([^{}]+)\}")


# =========================================================================
# 配方模型
# =========================================================================


class DepKind(str, Enum):
    """依赖类型"""

    BUILD = "build"
    RUNTIME = "runtime"
    OPTIONAL = "optional"


@dataclass(frozen=True)
class VersionSpec:
    """固定版本或 HEAD（跟踪分支最新提交）"""

    version: str = ""
    head: bool = False
    branch: str = ""

    def __post_init__(self) -> None:
        if not self.head and not self.version:
            raise ValidationError("固定版本的 version 不能为空")

    def __str__(self) -> str:
        if self.head:
            return f"{HEAD}-{self.branch}" if self.branch else HEAD
        return self.version

    @classmethod
    def parse(cls, text: str) -> VersionSpec:
        """解析 "1.2.3" / "HEAD" / "HEAD-devel" """
        if text == HEAD:
            return cls(head=True)
        if text.startswith(f"{HEAD}-"):
            return cls(head=True, branch=text[len(HEAD) + 1:])
        return cls(version=text)


@dataclass(frozen=True)
class Dependency:
    name: str
    kind: DepKind = DepKind.RUNTIME


@dataclass(frozen=True)
class Resource:
    """独立于主源码拉取的辅助文件"""

    name: str
    url: str
    sha256: str


@dataclass(frozen=True)
class Source:
    """主源码；HEAD 配方的 sha256 为空"""

    url: str
    sha256: str = ""


@dataclass(frozen=True)
class BuildStep:
    """单个构建步骤

    command 中的 {prefix} {bin} {etc} {var} {source} {resource:<name>}
    在执行时替换；env 仅对本步骤生效。
    """

    command: str
    env: dict[str, str] = field(default_factory=dict)

    def resource_refs(self) -> set[str]:
        return set(RESOURCE_REF_RE.findall(self.command))


@dataclass(frozen=True)
class TestStep:
    """安装后冒烟测试：match 为正则，在合并输出中搜索；为空时要求退出码为 0"""

    __test__ = False  # 避免被 pytest 当作测试类收集

    command: str
    match: str = ""


@dataclass(frozen=True)
class Formula:
    """配方描述 — 引擎只读"""

    name: str
    version_spec: VersionSpec
    dependencies: tuple[Dependency, ...] = ()
    resources: tuple[Resource, ...] = ()
    build_steps: tuple[BuildStep, ...] = ()
    test_step: TestStep | None = None
    source: Source | None = None
    desc: str = ""
    homepage: str = ""

    @property
    def is_head(self) -> bool:
        return self.version_spec.head

    def resource(self, name: str) -> Resource | None:
        for r in self.resources:
            if r.name == name:
                return r
        return None

    def edges(self, include_optional: frozenset[str] | set[str] = frozenset()) -> list[Dependency]:
        """需要参与解析的依赖边（声明顺序）"""
        return [
            d for d in self.dependencies
            if d.kind is not DepKind.OPTIONAL or d.name in include_optional
        ]

    def validate(self) -> None:
        """检查配方自身的不变量，失败抛 ValidationError（details 列出全部问题）"""
        issues: list[str] = []
        if not self.name or not self.name.strip():
            issues.append("name 不能为空")

        seen_deps: set[str] = set()
        for d in self.dependencies:
            if d.name == self.name:
                issues.append(f"不能依赖自身: {d.name}")
            if d.name in seen_deps:
                issues.append(f"重复依赖: {d.name}")
            seen_deps.add(d.name)

        declared: set[str] = set()
        for r in self.resources:
            if r.name in declared:
                issues.append(f"重复资源: {r.name}")
            declared.add(r.name)
            if not r.url:
                issues.append(f"资源 {r.name} 缺少 url")
            if not r.sha256:
                issues.append(f"资源 {r.name} 缺少 sha256")

        referenced: set[str] = set()
        for step in self.build_steps:
            referenced |= step.resource_refs()
        if self.test_step:
            referenced |= set(RESOURCE_REF_RE.findall(self.test_step.command))
        for missing in sorted(referenced - declared):
            issues.append(f"构建步骤引用了未声明的资源: {missing}")

        if self.test_step and self.test_step.match:
            try:
                re.compile(self.test_step.match)
            except re.error as e:
                issues.append(f"test.match 不是合法的正则: {self.test_step.match!r} ({e})")

        uses_source = any("{source}" in s.command for s in self.build_steps)
        if uses_source and self.source is None:
            issues.append("构建步骤引用了 {source}，但未声明 source")
        if self.source and not self.is_head and not self.source.sha256:
            issues.append("固定版本的 source 必须提供 sha256")

        if issues:
            raise ValidationError(
                f"配方 '{self.name}' 无效: {'; '.join(issues)}", details=issues,
            )


# =========================================================================
# 安装路径
# =========================================================================


@dataclass(frozen=True)
class InstallPaths:
    """单个配方的安装路径

    prefix 与 bin 归配方独占；etc / var 是安装根下共享的持久目录。
    """

    prefix: Path
    bin: Path
    etc: Path
    var: Path

    @classmethod
    def for_formula(cls, root: Path, formula: Formula) -> InstallPaths:
        prefix = root / "Cellar" / formula.name / str(formula.version_spec)
        return cls(
            prefix=prefix, bin=prefix / "bin",
            etc=root / "etc", var=root / "var",
        )

    def as_mapping(self) -> dict[str, str]:
        return {k: str(getattr(self, k)) for k in PATH_PLACEHOLDERS}

    def ensure(self) -> None:
        for p in (self.prefix, self.bin, self.etc, self.var):
            p.mkdir(parents=True, exist_ok=True)


# =========================================================================
# 安装计划
# =========================================================================


@dataclass
class PlanNode:
    """计划中的一个节点；dependencies 只包含实际参与解析的边"""

    formula: Formula
    dependencies: tuple[str, ...] = ()
    skip_build: bool = False
    requested: bool = False

    @property
    def name(self) -> str:
        return self.formula.name


@dataclass
class InstallPlan:
    """有序安装计划：任一依赖都排在依赖方之前"""

    nodes: list[PlanNode] = field(default_factory=list)

    def __iter__(self) -> Iterator[PlanNode]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def names(self) -> list[str]:
        return [n.name for n in self.nodes]

    def get(self, name: str) -> PlanNode | None:
        for n in self.nodes:
            if n.name == name:
                return n
        return None


# =========================================================================
# 回执与结果
# =========================================================================


@dataclass
class Receipt:
    """安装回执"""

    name: str
    version_spec: str
    installed_paths: list[str] = field(default_factory=list)
    timestamp: float = 0.0
    build_options_used: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version_spec": self.version_spec,
            "installed_paths": list(self.installed_paths),
            "timestamp": self.timestamp,
            "build_options_used": dict(self.build_options_used),
        }

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> Receipt:
        return cls(
            name=name,
            version_spec=str(data["version_spec"]),
            installed_paths=list(data.get("installed_paths") or []),
            timestamp=float(data.get("timestamp", 0.0)),
            build_options_used=dict(data.get("build_options_used") or {}),
        )


@dataclass
class InstallResult:
    """BuildExecutor 成功后的产物"""

    name: str
    prefix: Path
    installed_paths: list[str] = field(default_factory=list)
    duration: float = 0.0
    warnings: list[PostInstallTestFailed] = field(default_factory=list)


class OutcomeStatus(str, Enum):
    INSTALLED = "installed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class NodeOutcome:
    """单个节点的结局；失败时附带出错步骤和捕获的输出"""

    name: str
    status: OutcomeStatus
    reason: str = ""
    error_code: str = ""
    step_index: int | None = None
    output: str = ""
    warnings: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.reason:
            d["reason"] = self.reason
        if self.error_code:
            d["error_code"] = self.error_code
        if self.step_index is not None:
            d["step_index"] = self.step_index
        if self.output:
            d["output"] = self.output
        if self.warnings:
            d["warnings"] = list(self.warnings)
        if self.duration:
            d["duration"] = round(self.duration, 3)
        return d


@dataclass
class InstallReport:
    """安装报告"""

    policy: str = "fail_fast"
    outcomes: dict[str, NodeOutcome] = field(default_factory=dict)
    aborted: list[str] = field(default_factory=list)  # fail_fast 下未执行的节点
    cancelled: bool = False

    def add(self, outcome: NodeOutcome) -> None:
        self.outcomes[outcome.name] = outcome

    def by_status(self, status: OutcomeStatus) -> list[str]:
        return [n for n, o in self.outcomes.items() if o.status is status]

    @property
    def success(self) -> bool:
        return (
            not self.aborted and not self.cancelled
            and all(o.ok for o in self.outcomes.values())
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy": self.policy,
            "success": self.success,
            "cancelled": self.cancelled,
            "aborted": list(self.aborted),
            "outcomes": [o.to_dict() for o in self.outcomes.values()],
        }
