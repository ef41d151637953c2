"""CLI - 缓存查询命令"""

from __future__ import annotations

import click

from pinset.core.config import Config, get_config
from pinset.core.dep.cache import PackageCache


def register(group: click.Group) -> None:
    group.add_command(cache)


@click.command()
@click.argument("directory", default=".", type=click.Path(file_okay=False))
def cache(directory: str) -> None:
    """列出本地缓存中已发布的包快照"""
    root = Config.resolve_path(directory, get_config().cache_dir)
    entries = PackageCache(root).entries()
    if not entries:
        click.echo(f"缓存为空: {root}")
        return
    for entry in entries:
        click.echo(f"  {entry.key}  {entry.fetched_at}  {entry.path}")
