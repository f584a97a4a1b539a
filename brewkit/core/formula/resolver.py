"""依赖解析器

职责:
- 从目标配方出发做深度优先拓扑排序，生成安装计划
- 检测循环依赖并给出环路径
- 已安装且版本一致的节点标记 skip_build，仍保留在计划中

排序规则:
  - runtime / build 边总是参与解析
  - optional 边仅当依赖名在 include_optional 中时参与
  - 无先后约束的依赖保持声明顺序；多个目标按调用方给出的顺序处理
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Protocol

from brewkit.core.exceptions import CyclicDependency, FormulaNotFound
from brewkit.core.models import DepKind, Formula, InstallPlan, PlanNode, Receipt

logger = logging.getLogger(__name__)

FormulaLookup = Callable[[str], Formula]


class ReceiptLookup(Protocol):
    def lookup(self, name: str) -> Receipt | None:
        ...


class DependencyResolver:
    """依赖解析器 — 只读，不触发下载或构建"""

    def __init__(
        self,
        lookup: FormulaLookup,
        store: ReceiptLookup | None = None,
        include_optional: Iterable[str] = (),
    ) -> None:
        self._lookup = lookup
        self._store = store
        self.include_optional = frozenset(include_optional)

    def resolve(self, target: Formula) -> InstallPlan:
        """为单个配方生成安装计划"""
        return self._build([target])

    def resolve_many(self, names: Iterable[str]) -> InstallPlan:
        """为多个配方生成合并计划，共享依赖只出现一次"""
        targets = [self._find(n) for n in dict.fromkeys(names)]
        return self._build(targets)

    # ------------------------------------------------------------------

    def _find(self, name: str, required_by: str = "") -> Formula:
        try:
            return self._lookup(name)
        except FormulaNotFound:
            raise FormulaNotFound(name, required_by=required_by) from None

    def _build(self, targets: list[Formula]) -> InstallPlan:
        nodes: list[PlanNode] = []
        done: set[str] = set()
        for target in targets:
            self._visit(target, [], done, nodes)

        requested = {t.name for t in targets}
        for node in nodes:
            node.requested = node.name in requested

        plan = InstallPlan(nodes=nodes)
        logger.info(
            "安装计划: %s (跳过 %d 个已安装)",
            " -> ".join(plan.names()), sum(1 for n in nodes if n.skip_build),
        )
        return plan

    def _visit(
        self, formula: Formula, stack: list[str],
        done: set[str], nodes: list[PlanNode],
    ) -> None:
        name = formula.name
        if name in done:
            return
        if name in stack:
            cycle = stack[stack.index(name):] + [name]
            raise CyclicDependency(cycle)

        stack.append(name)
        edges = formula.edges(self.include_optional)
        for dep in edges:
            self._visit(self._find(dep.name, required_by=name), stack, done, nodes)
        stack.pop()

        done.add(name)
        nodes.append(PlanNode(
            formula=formula,
            dependencies=tuple(d.name for d in edges),
            skip_build=self._satisfied(formula),
        ))

    def _satisfied(self, formula: Formula) -> bool:
        if self._store is None:
            return False
        receipt = self._store.lookup(formula.name)
        return receipt is not None and receipt.version_spec == str(formula.version_spec)

    # ------------------------------------------------------------------
    # 反向查询
    # ------------------------------------------------------------------

    @staticmethod
    def dependents(name: str, plan: InstallPlan) -> set[str]:
        """计划中直接或间接依赖 name 的全部节点"""
        result: set[str] = set()
        frontier = {name}
        # 计划已拓扑有序，单次正向扫描即可闭包
        for node in plan:
            if frontier.intersection(node.dependencies):
                result.add(node.name)
                frontier.add(node.name)
        return result

    @staticmethod
    def uses(name: str, formulae: Iterable[Formula], *, runtime_only: bool = True) -> list[str]:
        """直接依赖 name 的配方；runtime_only 时忽略 build/optional 边"""
        users = []
        for f in formulae:
            for d in f.dependencies:
                if d.name == name and (not runtime_only or d.kind is DepKind.RUNTIME):
                    users.append(f.name)
                    break
        return users
