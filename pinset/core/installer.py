"""安装器

串联 清单解析 -> 依赖闭包 -> 缓存拉取，产出 包名 -> 源码路径 映射。

用法:
    from pinset.core.installer import Installer, install, package_sources

    # 显式清单 + 根集合
    result = install(Path("package-set.yml"), ["base"], base_dir="/work/app")
    result.flags()   # ["--package", "base", "/work/app/.pinset/.../src"]

    # 按项目文件（project.yml）向上查找并安装
    result = Installer("/work/app/src").install_project()

    # 嵌入方边界: 所有错误折叠为一条描述字符串
    sources = package_sources("/work/app")
    if not sources.ok:
        print(sources.error)

所有相对路径都相对 base_dir 解析，不切换、不读取进程工作目录。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from pinset.core.config import Config, get_config
from pinset.core.dep.cache import PackageCache
from pinset.core.dep.fetcher import PackageFetcher
from pinset.core.dep.models import Catalog, DependencyClosure, InstallResult
from pinset.core.dep.project import ProjectSpec, find_project_root, load_project
from pinset.core.dep.registry import ManifestParser
from pinset.core.dep.resolver import DependencyResolver
from pinset.core.exceptions import IncompleteInstallError, PinsetError
from pinset.core.protocols import Transport

logger = logging.getLogger(__name__)


class Installer:
    """依赖安装器 - 每次 install 持有一份只读 Catalog"""

    def __init__(
        self,
        base_dir: str | Path = ".",
        *,
        config: Config | None = None,
        transport: Transport | None = None,
        fetcher: PackageFetcher | None = None,
    ) -> None:
        self.base_dir = Path(base_dir)
        # 缓存目录与本地 source 的解析基准；找到项目文件后切换为项目根
        self.root_dir = self.base_dir
        self.config = config or get_config()
        self.config.validate()
        self._transport = transport
        self._fetcher = fetcher

    @property
    def fetcher(self) -> PackageFetcher:
        """首次使用时按 root_dir 创建拉取器"""
        if self._fetcher is None:
            transport = self._transport
            if transport is None:
                from pinset.services.sources import create_transport
                transport = create_transport(
                    self.config.transport,
                    base_dir=self.root_dir,
                    timeout=self.config.fetch_timeout,
                )
            cache_root = Config.resolve_path(self.root_dir, self.config.cache_dir)
            cache = PackageCache(cache_root)
            cache.sweep_staging(max_age=self.config.fetch_timeout * 2)
            self._fetcher = PackageFetcher(
                cache,
                transport,
                max_workers=self.config.max_workers,
            )
        return self._fetcher

    # ------------------------------------------------------------------
    # 各阶段
    # ------------------------------------------------------------------

    def load_catalog(self, manifest: str | Path) -> Catalog:
        """Path 视为清单文件（相对 root_dir），str 视为清单文本"""
        if isinstance(manifest, Path):
            return ManifestParser().load(Config.resolve_path(self.root_dir, manifest))
        return ManifestParser().parse(manifest)

    def resolve(self, manifest: str | Path, root_names: Iterable[str]) -> DependencyClosure:
        """只解析闭包，不拉取"""
        return DependencyResolver(self.load_catalog(manifest)).resolve(root_names)

    def install(self, manifest: str | Path, root_names: Iterable[str]) -> InstallResult:
        """解析清单、计算闭包、拉取全部包，返回 包名 -> 源码路径

        按 清单 -> 解析 -> 拉取 的顺序，遇到第一个错误即原样抛出。
        """
        return self.install_catalog(self.load_catalog(manifest), root_names)

    def install_catalog(self, catalog: Catalog, root_names: Iterable[str]) -> InstallResult:
        closure = DependencyResolver(catalog).resolve(root_names)

        before = self.fetcher.stats
        roots = self.fetcher.ensure_installed_all(closure)
        delta = self.fetcher.stats - before

        result = self._map_paths(closure, roots)
        logger.info(
            "安装完成: %d 个包 (新拉取 %d, 缓存命中 %d, 并发复用 %d)",
            len(result), delta.fetched, delta.hits, delta.shared,
        )
        return result

    def find_project(self) -> ProjectSpec:
        root = find_project_root(self.base_dir, self.config.project_file)
        if self._fetcher is None:
            self.root_dir = root
        return load_project(root / self.config.project_file)

    def install_project(self) -> InstallResult:
        """从 base_dir 向上查找项目文件，按其直接依赖安装"""
        project = self.find_project()
        manifest = project.manifest_path(self.config.manifest)
        return self.install(manifest, project.dependencies)

    # ------------------------------------------------------------------
    # 路径映射
    # ------------------------------------------------------------------

    def _map_paths(self, closure: DependencyClosure, roots: dict[str, Path]) -> InstallResult:
        """快照根目录 -> 源码目录；闭包中每个包都必须有路径"""
        missing = sorted(name for name in closure.names if name not in roots)
        if missing:
            raise IncompleteInstallError(missing)

        paths: dict[str, Path] = {}
        for pkg in closure:
            root = roots[pkg.name]
            subdir = pkg.path or self.config.source_dir
            candidate = root / subdir if subdir else root
            if not candidate.is_dir():
                if pkg.path:
                    logger.warning(
                        "包 %s 声明的源码目录不存在，使用快照根目录: %s",
                        pkg.name, candidate, extra={"package": pkg.name},
                    )
                candidate = root
            paths[pkg.name] = candidate
        return InstallResult(paths)


def install(
    manifest: str | Path,
    root_names: Iterable[str],
    *,
    base_dir: str | Path = ".",
    config: Config | None = None,
    transport: Transport | None = None,
) -> InstallResult:
    """安装的便捷函数，见 Installer.install"""
    installer = Installer(base_dir, config=config, transport=transport)
    return installer.install(manifest, root_names)


# =========================================================================
# 嵌入方边界
# =========================================================================

@dataclass
class SourcesResult:
    """边界调用结果: 成功时 sources 有值，失败时 error 为一条描述字符串"""

    sources: dict[str, str] = field(default_factory=dict)
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


def package_sources(
    directory: str | Path,
    *,
    config: Config | None = None,
    transport: Transport | None = None,
) -> SourcesResult:
    """按 directory 的项目文件安装全部依赖，错误折叠为字符串"""
    try:
        installer = Installer(directory, config=config, transport=transport)
        project = installer.find_project()
        catalog = installer.load_catalog(project.manifest_path(installer.config.manifest))
    except (PinsetError, OSError) as e:
        logger.error("加载包集合失败: %s", e)
        return SourcesResult(error=f"加载包集合时出错: {e}")

    try:
        result = installer.install_catalog(catalog, project.dependencies)
    except (PinsetError, OSError) as e:
        logger.error("安装包失败: %s", e)
        return SourcesResult(error=f"安装包时出错: {e}")
    return SourcesResult(sources=result.as_strings())

