"""依赖包数据模型

数据类:
- CacheKey: 缓存键 (source, revision)
- PackageDescriptor: 清单中的单个包
- Catalog: 一份清单的全部包，按包名索引
- DependencyClosure: 从根集合出发可达的包
- CacheEntry: 已发布到缓存中的一个 (source, revision)
- InstallResult: 包名 -> 本地源码路径
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType


@dataclass(frozen=True)
class CacheKey:
    """缓存键，标识一个不可变的源码快照"""

    source: str
    revision: str

    def __str__(self) -> str:
        return f"{self.source}@{self.revision}"


@dataclass(frozen=True)
class PackageDescriptor:
    """清单中的单个包"""

    name: str
    source: str
    revision: str
    dependencies: tuple[str, ...] = ()
    path: str = ""  # 快照内源码子目录，空则使用配置的 source_dir

    @property
    def key(self) -> CacheKey:
        return CacheKey(self.source, self.revision)


class Catalog(Mapping[str, PackageDescriptor]):
    """不可变的包目录，保持清单中的声明顺序"""

    def __init__(self, packages: Iterable[PackageDescriptor] = ()) -> None:
        index: dict[str, PackageDescriptor] = {}
        for pkg in packages:
            if pkg.name in index:
                raise ValueError(f"包名重复: '{pkg.name}'")
            index[pkg.name] = pkg
        self._packages = MappingProxyType(index)

    def __getitem__(self, name: str) -> PackageDescriptor:
        return self._packages[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._packages)

    def __len__(self) -> int:
        return len(self._packages)

    def __repr__(self) -> str:
        return f"Catalog({list(self._packages)!r})"


@dataclass(frozen=True)
class DependencyClosure:
    """依赖闭包

    packages 为闭包成员；order 记录遍历发现顺序，只用于日志展示。
    """

    roots: tuple[str, ...]
    packages: Mapping[str, PackageDescriptor]
    order: tuple[str, ...] = ()

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self.packages)

    def __contains__(self, name: object) -> bool:
        return name in self.packages

    def __len__(self) -> int:
        return len(self.packages)

    def __iter__(self) -> Iterator[PackageDescriptor]:
        for name in sorted(self.packages):
            yield self.packages[name]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class CacheEntry:
    """缓存条目: 发布后不再修改"""

    key: CacheKey
    path: Path
    fetched_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, str]:
        return {
            "source": self.key.source,
            "revision": self.key.revision,
            "fetched_at": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: dict, path: Path) -> CacheEntry:
        return cls(
            key=CacheKey(str(data["source"]), str(data["revision"])),
            path=path,
            fetched_at=str(data.get("fetched_at", "")),
        )


class InstallResult(Mapping[str, Path]):
    """安装结果: 包名 -> 本地源码路径，恰好覆盖依赖闭包"""

    def __init__(self, paths: Mapping[str, Path]) -> None:
        self._paths = MappingProxyType(dict(paths))

    def __getitem__(self, name: str) -> Path:
        return self._paths[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._paths)

    def __len__(self) -> int:
        return len(self._paths)

    def __repr__(self) -> str:
        return f"InstallResult({dict(self._paths)!r})"

    def as_strings(self) -> dict[str, str]:
        return {name: str(path) for name, path in self._paths.items()}

    def flags(self) -> list[str]:
        """编译器参数: --package <name> <path>，按包名排序"""
        args: list[str] = []
        for name in sorted(self._paths):
            args.extend(["--package", name, str(self._paths[name])])
        return args
