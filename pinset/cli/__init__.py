"""pinset 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import functools
import os
from collections.abc import Callable
from typing import Any, TypeVar

import click

from pinset import __version__
from pinset.core.config import DEFAULT_CONFIG_FILE, init_config
from pinset.core.exceptions import PinsetError
from pinset.utils.logger import setup_logging

F = TypeVar("F", bound=Callable[..., Any])


def handle_errors(func: F) -> F:
    """把 PinsetError 转为 click 的友好错误输出: [CODE] 消息"""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except PinsetError as e:
            raise click.ClickException(f"[{e.code}] {e}") from e

    return wrapper  # type: ignore[return-value]


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_path", default=DEFAULT_CONFIG_FILE,
    help="配置文件路径（不存在则使用默认配置）",
)
def main(config_path: str) -> None:
    """pinset - 固定版本包集合的依赖解析与安装"""
    setup_logging(
        level=os.getenv("PINSET_LOG_LEVEL", "WARNING"),
        json_output=os.getenv("PINSET_LOG_JSON", "") == "1",
    )
    try:
        init_config(config_path)
    except PinsetError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e


# 注册各领域子命令
from pinset.cli.cmd_cache import register as _reg_cache  # noqa: E402
from pinset.cli.cmd_deps import register as _reg_deps  # noqa: E402

_reg_deps(main)
_reg_cache(main)
