"""依赖闭包解析器

职责:
- 从项目的直接依赖（根集合）出发，计算传递闭包
- 校验根包与传递依赖都存在于清单中

允许依赖环: 安装只需要知道某个包是否在闭包内，不需要拓扑构建顺序。
因此使用 "工作队列 + 已见集合" 迭代遍历，而不是递归调用栈。
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable

from pinset.core.dep.models import Catalog, DependencyClosure, PackageDescriptor
from pinset.core.exceptions import UnknownDependencyError, UnknownRootError

logger = logging.getLogger(__name__)


class DependencyResolver:
    """依赖闭包解析器 - 纯内存计算，不做任何 IO"""

    def __init__(self, catalog: Catalog) -> None:
        self.catalog = catalog

    def resolve(self, root_names: Iterable[str]) -> DependencyClosure:
        """计算根集合的传递闭包

        异常:
            UnknownRootError: 根包不在清单中
            UnknownDependencyError: 某个包的依赖不在清单中
        """
        roots = tuple(dict.fromkeys(root_names))
        for name in roots:
            if name not in self.catalog:
                raise UnknownRootError(name)

        seen: dict[str, PackageDescriptor] = {}
        queue: deque[str] = deque()
        for name in roots:
            seen[name] = self.catalog[name]
            queue.append(name)

        while queue:
            parent = seen[queue.popleft()]
            for dep in parent.dependencies:
                if dep in seen:
                    continue
                pkg = self.catalog.get(dep)
                if pkg is None:
                    raise UnknownDependencyError(parent.name, dep)
                seen[dep] = pkg
                queue.append(dep)

        order = tuple(seen)
        logger.debug("依赖闭包 (根: %s): %s", ", ".join(roots), " -> ".join(order))
        logger.info("依赖闭包包含 %d 个包", len(order))
        return DependencyClosure(roots=roots, packages=dict(seen), order=order)

    def dangling(self) -> list[tuple[str, str]]:
        """列出清单中全部悬空引用 (parent, missing)，不抛异常"""
        problems: list[tuple[str, str]] = []
        for pkg in self.catalog.values():
            for dep in pkg.dependencies:
                if dep not in self.catalog:
                    problems.append((pkg.name, dep))
        return problems


def resolve(catalog: Catalog, root_names: Iterable[str]) -> DependencyClosure:
    """计算依赖闭包的便捷函数"""
    return DependencyResolver(catalog).resolve(root_names)
