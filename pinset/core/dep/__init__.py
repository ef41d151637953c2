"""依赖包管理

- models.py: 数据模型
- registry.py: 清单解析
- resolver.py: 依赖闭包
- cache.py: 磁盘缓存
- singleflight.py: 并发请求合并
- fetcher.py: 缓存感知拉取
- project.py: 项目文件
"""

from pinset.core.dep.cache import PackageCache
from pinset.core.dep.fetcher import FetchStats, PackageFetcher
from pinset.core.dep.models import (
    CacheEntry,
    CacheKey,
    Catalog,
    DependencyClosure,
    InstallResult,
    PackageDescriptor,
)
from pinset.core.dep.registry import ManifestParser, load_manifest, parse_manifest
from pinset.core.dep.resolver import DependencyResolver, resolve

__all__ = [
    "CacheEntry",
    "CacheKey",
    "Catalog",
    "DependencyClosure",
    "DependencyResolver",
    "FetchStats",
    "InstallResult",
    "ManifestParser",
    "PackageCache",
    "PackageDescriptor",
    "PackageFetcher",
    "load_manifest",
    "parse_manifest",
    "resolve",
]
