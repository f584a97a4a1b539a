"""brewkit 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。

退出码:
    0 - 全部节点已安装或跳过
    1 - 有节点失败 / 被中止 / 被取消
    2 - 规划期错误（配方不存在、循环依赖、配置无效等）
"""

from __future__ import annotations

import os
import sys
from typing import NoReturn

import click

from brewkit import __version__
from brewkit.core.config import init_config
from brewkit.core.exceptions import BrewkitError
from brewkit.services.container import ServiceContainer, get_container, reset_container
from brewkit.utils.logger import setup_logging

EXIT_PLANNING_ERROR = 2


def _svc() -> ServiceContainer:
    """获取全局服务容器的快捷方式"""
    return get_container()


def _fail(exc: BrewkitError) -> NoReturn:
    click.echo(f"错误 [{exc.code}]: {exc}", err=True)
    details = getattr(exc, "details", None)
    for d in details or []:
        click.echo(f"  - {d}", err=True)
    sys.exit(EXIT_PLANNING_ERROR)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_path",
    default=lambda: os.getenv("BREWKIT_CONFIG", "configs/default.yml"),
    help="配置文件路径",
)
def main(config_path: str) -> None:
    """brewkit - 配方解析与构建编排引擎"""
    setup_logging(
        level=os.getenv("BREWKIT_LOG_LEVEL", "INFO"),
        json_output=os.getenv("BREWKIT_LOG_JSON", "") == "1",
    )
    try:
        init_config(config_path)
    except BrewkitError as e:
        _fail(e)
    reset_container()


# 注册各领域子命令
from brewkit.cli.cmd_install import register as _reg_install  # noqa: E402
from brewkit.cli.cmd_formula import register as _reg_formula  # noqa: E402

_reg_install(main)
_reg_formula(main)
