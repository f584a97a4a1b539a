"""CLI — 配方查询与拉取"""

from __future__ import annotations

import click

from brewkit.cli import _fail, _svc
from brewkit.core.exceptions import BrewkitError


def register(group: click.Group) -> None:
    group.add_command(list_formulae)
    group.add_command(info)
    group.add_command(fetch)
    group.add_command(clean)


@click.command(name="list")
@click.option("--installed", is_flag=True, help="只列出已安装的配方")
def list_formulae(installed: bool) -> None:
    """列出配方目录或已安装的配方"""
    if installed:
        receipts = _svc().store.list_all()
        if not receipts:
            click.echo("没有已安装的配方。")
            return
        for r in receipts:
            click.echo(f"  {r.name:24s} {r.version_spec}")
        return

    formulae = _svc().catalog.list_formulae()
    if not formulae:
        click.echo("配方目录为空。")
        return
    for f in formulae:
        click.echo(f"  {f['name']:24s} {f['version']:12s} {f['desc']}")


@click.command()
@click.argument("name")
def info(name: str) -> None:
    """显示配方详情和安装状态"""
    try:
        formula = _svc().catalog.get(name)
    except BrewkitError as e:
        _fail(e)
    click.echo(f"{formula.name}: {formula.version_spec}")
    if formula.desc:
        click.echo(formula.desc)
    if formula.homepage:
        click.echo(formula.homepage)
    if formula.dependencies:
        click.echo("依赖:")
        for d in formula.dependencies:
            click.echo(f"  {d.name} ({d.kind.value})")
    if formula.resources:
        click.echo("资源:")
        for r in formula.resources:
            click.echo(f"  {r.name}: {r.url}")
    receipt = _svc().store.lookup(name)
    if receipt:
        click.echo(f"已安装: {receipt.version_spec}")
        for p in receipt.installed_paths:
            click.echo(f"  {p}")
    else:
        click.echo("未安装")


@click.command()
@click.argument("name")
def fetch(name: str) -> None:
    """只拉取配方的源码和资源（不构建）"""
    try:
        formula = _svc().catalog.get(name)
        source, resources = _svc().fetcher.fetch_formula(formula)
    except BrewkitError as e:
        _fail(e)
    if source is not None:
        click.echo(f"源码: {source}")
    for res_name, path in resources.items():
        click.echo(f"资源 {res_name}: {path}")


@click.command()
def clean() -> None:
    """清理下载中断遗留的临时文件"""
    removed = _svc().fetcher.clean()
    click.echo(f"已清理 {removed} 个临时文件")
