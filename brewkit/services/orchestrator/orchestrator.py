"""安装编排器 - 组合解析 / 拉取 / 构建 / 回执

职责:
- 为全部请求的配方生成一份合并计划（解析错误直接抛出，不执行任何节点）
- 严格按计划顺序执行节点，节点级错误写入报告
- fail_fast / best_effort 两种失败策略
- jobs > 1 时并行执行互不依赖的节点；节点只在全部依赖已安装或跳过后启动
- 取消: 节点之间优雅停止，节点内部经由构建器的清理路径
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Iterable

from brewkit.core.exceptions import (
    BuildStepFailed,
    BrewkitError,
    DependencyError,
    InstallCancelled,
    NodeCrashed,
)
from brewkit.core.formula.catalog import FormulaCatalog
from brewkit.core.formula.fetcher import ResourceFetcher
from brewkit.core.formula.resolver import DependencyResolver
from brewkit.core.models import (
    DepKind,
    Formula,
    InstallPlan,
    InstallReport,
    InstallResult,
    NodeOutcome,
    OutcomeStatus,
    PlanNode,
    Receipt,
)
from brewkit.core.receipts import InstallationStore
from brewkit.services.build.executor import BuildExecutor
from brewkit.services.orchestrator.models import FAIL_FAST, InstallOptions

logger = logging.getLogger(__name__)


class Orchestrator:
    """安装编排器"""

    def __init__(
        self,
        catalog: FormulaCatalog,
        fetcher: ResourceFetcher,
        executor: BuildExecutor,
        store: InstallationStore,
        install_root: str | Path,
    ) -> None:
        self.catalog = catalog
        self.fetcher = fetcher
        self.executor = executor
        self.store = store
        self.install_root = Path(install_root)
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """请求取消进行中的安装"""
        logger.warning("收到取消请求")
        self._cancel.set()

    # ------------------------------------------------------------------
    # 规划
    # ------------------------------------------------------------------

    def plan(self, names: Iterable[str], options: InstallOptions | None = None) -> InstallPlan:
        """生成合并安装计划；force 时请求的配方不跳过"""
        options = options or InstallOptions()
        resolver = DependencyResolver(
            self.catalog.get, self.store, include_optional=options.include_optional,
        )
        plan = resolver.resolve_many(names)
        if options.force:
            for node in plan:
                if node.requested:
                    node.skip_build = False
        return plan

    # ------------------------------------------------------------------
    # 安装
    # ------------------------------------------------------------------

    def install(self, names: Iterable[str], options: InstallOptions | None = None) -> InstallReport:
        """安装配方集合，返回每个节点的结局"""
        options = options or InstallOptions()
        plan = self.plan(names, options)
        self._cancel.clear()
        report = InstallReport(policy=options.policy)

        if options.jobs > 1:
            self._run_parallel(plan, options, report)
        else:
            self._run_serial(plan, options, report)

        # 并行模式下按完成顺序写入，统一回到计划顺序
        report.outcomes = {
            n: report.outcomes[n] for n in plan.names() if n in report.outcomes
        }
        logger.info(
            "安装汇总: installed=%d skipped=%d failed=%d aborted=%d%s",
            len(report.by_status(OutcomeStatus.INSTALLED)),
            len(report.by_status(OutcomeStatus.SKIPPED)),
            len(report.by_status(OutcomeStatus.FAILED)),
            len(report.aborted),
            " (已取消)" if report.cancelled else "",
        )
        return report

    def _run_serial(self, plan: InstallPlan, options: InstallOptions, report: InstallReport) -> None:
        nodes = plan.nodes
        for i, node in enumerate(nodes):
            if self._cancel.is_set():
                report.cancelled = True
                report.aborted = [n.name for n in nodes[i:]]
                return
            blocked = self._blocked_outcome(node, report)
            outcome = blocked or self._run_node(node, options)
            report.add(outcome)
            if self._should_stop(outcome, options, report):
                report.aborted = [n.name for n in nodes[i + 1:]]
                return

    def _run_parallel(self, plan: InstallPlan, options: InstallOptions, report: InstallReport) -> None:
        pending: list[PlanNode] = list(plan.nodes)
        running: dict[Future[NodeOutcome], PlanNode] = {}
        stop = False

        with ThreadPoolExecutor(max_workers=options.jobs, thread_name_prefix="brewkit") as pool:
            while pending or running:
                if self._cancel.is_set():
                    report.cancelled = True
                    stop = True
                if not stop:
                    # 计划已拓扑有序，单次扫描即可把失败传递到整条下游
                    for node in list(pending):
                        if len(running) >= options.jobs:
                            break
                        blocked = self._blocked_outcome(node, report)
                        if blocked is not None:
                            pending.remove(node)
                            report.add(blocked)
                            continue
                        if all(d in report.outcomes for d in node.dependencies):
                            pending.remove(node)
                            running[pool.submit(self._run_node, node, options)] = node
                if not running:
                    break
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for fut in done:
                    running.pop(fut)
                    outcome = fut.result()
                    report.add(outcome)
                    if self._should_stop(outcome, options, report):
                        stop = True

        if pending:
            report.aborted = [n.name for n in pending]

    def _blocked_outcome(self, node: PlanNode, report: InstallReport) -> NodeOutcome | None:
        """依赖中有失败节点时直接判定失败"""
        failed = [
            d for d in node.dependencies
            if d in report.outcomes and not report.outcomes[d].ok
        ]
        if not failed:
            return None
        logger.warning("跳过 %s: 依赖失败 %s", node.name, ", ".join(failed))
        return NodeOutcome(
            name=node.name, status=OutcomeStatus.FAILED,
            reason=f"依赖失败: {', '.join(failed)}",
            error_code=DependencyError.code,
        )

    def _should_stop(self, outcome: NodeOutcome, options: InstallOptions, report: InstallReport) -> bool:
        if outcome.error_code == InstallCancelled.code:
            report.cancelled = True
            return True
        return not outcome.ok and options.policy == FAIL_FAST

    def _run_node(self, node: PlanNode, options: InstallOptions) -> NodeOutcome:
        """拉取 → 构建 → 记录回执；节点级错误转为失败结局"""
        formula = node.formula
        if node.skip_build:
            logger.info("已安装，跳过: %s@%s", formula.name, formula.version_spec)
            return NodeOutcome(
                name=formula.name, status=OutcomeStatus.SKIPPED,
                reason=f"已安装 {formula.version_spec}",
            )

        start = time.monotonic()
        try:
            source_path, resources = self.fetcher.fetch_formula(formula)
            result = self.executor.build(
                formula, resources, self.install_root,
                source_path=source_path, cancel=self._cancel,
            )
            self.store.record(self._receipt_for(formula, result, options))
        except BuildStepFailed as e:
            return NodeOutcome(
                name=formula.name, status=OutcomeStatus.FAILED,
                reason=str(e), error_code=e.code,
                step_index=e.step_index, output=e.output,
                duration=time.monotonic() - start,
            )
        except BrewkitError as e:
            logger.error("安装失败 %s: %s", formula.name, e)
            return NodeOutcome(
                name=formula.name, status=OutcomeStatus.FAILED,
                reason=str(e), error_code=e.code,
                duration=time.monotonic() - start,
            )
        except Exception as e:
            # 只捕获普通异常，不拦截 KeyboardInterrupt/SystemExit
            logger.exception("安装异常 %s", formula.name)
            return NodeOutcome(
                name=formula.name, status=OutcomeStatus.FAILED,
                reason=f"{type(e).__name__}: {e}", error_code=NodeCrashed.code,
                duration=time.monotonic() - start,
            )

        return NodeOutcome(
            name=formula.name, status=OutcomeStatus.INSTALLED,
            warnings=[str(w) for w in result.warnings],
            duration=result.duration,
        )

    @staticmethod
    def _receipt_for(formula: Formula, result: InstallResult, options: InstallOptions) -> Receipt:
        return Receipt(
            name=formula.name,
            version_spec=str(formula.version_spec),
            installed_paths=result.installed_paths,
            timestamp=time.time(),
            build_options_used={
                "with": sorted(
                    d.name for d in formula.dependencies
                    if d.kind is DepKind.OPTIONAL and d.name in options.include_optional
                ),
                "head": formula.is_head,
            },
        )

    # ------------------------------------------------------------------
    # 卸载
    # ------------------------------------------------------------------

    def uninstall(self, name: str, *, force: bool = False) -> Receipt:
        """删除回执记录的全部路径和回执本身

        其他已安装配方在运行期依赖它时拒绝卸载（force 除外）。
        """
        receipt = self.store.lookup(name)
        if receipt is None:
            raise DependencyError(f"{name} 未安装")

        if not force:
            installed = [
                self.catalog.get(r.name) for r in self.store.list_all()
                if r.name != name and r.name in self.catalog
            ]
            users = DependencyResolver.uses(name, installed)
            if users:
                raise DependencyError(
                    f"{name} 仍被已安装的配方依赖: {', '.join(users)}",
                )

        root = self.install_root.resolve()
        for raw in receipt.installed_paths:
            path = Path(raw)
            if not path.resolve().is_relative_to(root):
                logger.warning("路径不在安装根下，跳过删除: %s", path)
                continue
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
                try:
                    path.parent.rmdir()
                except OSError:
                    pass
            else:
                path.unlink(missing_ok=True)

        self.store.remove(name)
        logger.info("已卸载: %s@%s", name, receipt.version_spec)
        return receipt
