"""CLI — 安装 / 卸载 / 计划"""

from __future__ import annotations

import json
import sys

import click

from brewkit.cli import _fail, _svc
from brewkit.core.exceptions import BrewkitError
from brewkit.core.models import InstallReport, OutcomeStatus
from brewkit.services.orchestrator import BEST_EFFORT, FAIL_FAST, InstallOptions


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(uninstall)
    group.add_command(plan)


_MARKS = {
    OutcomeStatus.INSTALLED: "OK",
    OutcomeStatus.SKIPPED: "SKIP",
    OutcomeStatus.FAILED: "FAIL",
}


def _echo_report(report: InstallReport) -> None:
    for o in report.outcomes.values():
        line = f"  [{_MARKS[o.status]:4s}] {o.name}"
        if o.reason and o.status is not OutcomeStatus.INSTALLED:
            line += f": {o.reason}"
        click.echo(line)
        for w in o.warnings:
            click.echo(f"         警告: {w}")
        if o.output:
            click.echo(f"         --- 步骤 #{o.step_index} 输出 ---")
            for out_line in o.output.rstrip().splitlines()[-20:]:
                click.echo(f"         {out_line}")
    for name in report.aborted:
        click.echo(f"  [----] {name}: 未执行")
    if report.cancelled:
        click.echo("安装已取消")
    status = "成功" if report.success else "失败"
    click.echo(f"安装{status}")


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--with", "with_optional", multiple=True, help="一并安装的可选依赖（可多次指定）")
@click.option("--best-effort", is_flag=True, help="失败后继续安装无关的配方")
@click.option("--jobs", "-j", type=int, default=None, help="并行构建数")
@click.option("--force", is_flag=True, help="已安装也重新构建")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出报告")
def install(
    names: tuple[str, ...], with_optional: tuple[str, ...], best_effort: bool,
    jobs: int | None, force: bool, as_json: bool,
) -> None:
    """安装配方及其依赖"""
    cfg = _svc().config
    try:
        options = InstallOptions(
            policy=BEST_EFFORT if best_effort else cfg.failure_policy or FAIL_FAST,
            include_optional=frozenset(with_optional),
            jobs=jobs or cfg.max_workers,
            force=force,
        )
        report = _svc().orchestrator.install(names, options)
    except BrewkitError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        _echo_report(report)
    sys.exit(report.exit_code)


@click.command()
@click.argument("name")
@click.option("--force", is_flag=True, help="即使仍被依赖也卸载")
def uninstall(name: str, force: bool) -> None:
    """卸载已安装的配方"""
    try:
        receipt = _svc().orchestrator.uninstall(name, force=force)
    except BrewkitError as e:
        _fail(e)
    click.echo(f"已卸载: {name}@{receipt.version_spec}")


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--with", "with_optional", multiple=True, help="计入的可选依赖")
def plan(names: tuple[str, ...], with_optional: tuple[str, ...]) -> None:
    """显示安装计划（不执行）"""
    try:
        p = _svc().orchestrator.plan(
            names, InstallOptions(include_optional=frozenset(with_optional)),
        )
    except BrewkitError as e:
        _fail(e)
    for i, node in enumerate(p, start=1):
        mark = " (已安装)" if node.skip_build else ""
        click.echo(f"  {i:2d}. {node.name} {node.formula.version_spec}{mark}")
