"""CLI - 依赖解析与安装命令"""

from __future__ import annotations

from pathlib import Path

import click

from pinset.cli import handle_errors
from pinset.core.config import get_config
from pinset.core.dep.registry import ManifestParser
from pinset.core.dep.resolver import DependencyResolver
from pinset.core.installer import Installer, package_sources


def register(group: click.Group) -> None:
    group.add_command(sources)
    group.add_command(install_cmd)
    group.add_command(closure)
    group.add_command(list_packages)
    group.add_command(verify)


def _manifest_path(directory: str, manifest: str | None) -> Path:
    return Path(directory) / (manifest or get_config().manifest)


@click.command()
@click.argument("directory", default=".", type=click.Path(file_okay=False))
def sources(directory: str) -> None:
    """安装项目依赖并输出编译器参数（每行 --package <name> <path>）"""
    result = package_sources(directory)
    if not result.ok:
        raise click.ClickException(result.error)
    for name in sorted(result.sources):
        click.echo(f"--package {name} {result.sources[name]}")


@click.command(name="install")
@click.argument("directory", default=".", type=click.Path(file_okay=False))
@click.option("--manifest", "-m", default=None, help="包集合清单路径（相对 DIRECTORY）")
@click.option("--root", "-r", "roots", multiple=True, help="直接依赖包名（可多次指定，不指定则读取项目文件）")
@handle_errors
def install_cmd(directory: str, manifest: str | None, roots: tuple[str, ...]) -> None:
    """安装依赖闭包并输出 name -> path"""
    installer = Installer(directory)
    if roots:
        result = installer.install(Path(manifest or installer.config.manifest), roots)
    else:
        result = installer.install_project()
    for name in sorted(result):
        click.echo(f"{name} -> {result[name]}")


@click.command()
@click.argument("directory", default=".", type=click.Path(file_okay=False))
@click.option("--manifest", "-m", default=None, help="包集合清单路径（相对 DIRECTORY）")
@click.option("--root", "-r", "roots", multiple=True, required=True, help="直接依赖包名（可多次指定）")
@handle_errors
def closure(directory: str, manifest: str | None, roots: tuple[str, ...]) -> None:
    """只计算依赖闭包，不拉取"""
    catalog = ManifestParser().load(_manifest_path(directory, manifest))
    result = DependencyResolver(catalog).resolve(roots)
    for pkg in result:
        click.echo(f"  {pkg.name:20s} {pkg.revision:16s} {pkg.source}")


@click.command(name="list")
@click.argument("directory", default=".", type=click.Path(file_okay=False))
@click.option("--manifest", "-m", default=None, help="包集合清单路径（相对 DIRECTORY）")
@handle_errors
def list_packages(directory: str, manifest: str | None) -> None:
    """列出清单中的全部包"""
    catalog = ManifestParser().load(_manifest_path(directory, manifest))
    rows = ManifestParser.list_packages(catalog)
    if not rows:
        click.echo("清单中没有包。")
        return
    for p in rows:
        deps = f"  -> {p['dependencies']}" if p["dependencies"] else ""
        click.echo(f"  {p['name']:20s} {p['revision']:16s} {p['source']}{deps}")


@click.command()
@click.argument("directory", default=".", type=click.Path(file_okay=False))
@click.option("--manifest", "-m", default=None, help="包集合清单路径（相对 DIRECTORY）")
@handle_errors
def verify(directory: str, manifest: str | None) -> None:
    """检查清单中的悬空依赖引用"""
    catalog = ManifestParser().load(_manifest_path(directory, manifest))
    problems = DependencyResolver(catalog).dangling()
    if not problems:
        click.echo(f"清单有效: {len(catalog)} 个包")
        return
    for parent, missing in problems:
        click.echo(f"  {parent} -> {missing} (不在清单中)")
    raise click.ClickException(f"发现 {len(problems)} 个悬空引用")
