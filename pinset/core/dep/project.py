"""项目文件

项目文件（默认 project.yml）声明项目的直接依赖，以及包集合清单的位置:

    dependencies: [base, matchers]
    manifest: package-set.yml    # 可选，相对项目文件所在目录

查找规则: 从起始目录开始逐级向上，找到的第一个项目文件所在目录即项目根。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from pinset.core.exceptions import ConfigError, ProjectNotFoundError
from pinset.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectSpec:
    """项目定义"""

    root_dir: Path
    dependencies: tuple[str, ...]
    manifest: str = ""

    def manifest_path(self, default: str) -> Path:
        return self.root_dir / (self.manifest or default)


def find_project_root(start: str | Path, filename: str) -> Path:
    """从 start 向上查找包含 filename 的目录"""
    origin = Path(start).resolve()
    for directory in (origin, *origin.parents):
        if (directory / filename).is_file():
            return directory
    raise ProjectNotFoundError(filename, str(origin))


def load_project(path: str | Path) -> ProjectSpec:
    """读取项目文件"""
    p = Path(path)
    try:
        data = load_yaml(p)
    except (ValueError, OSError, yaml.YAMLError) as e:
        raise ConfigError(f"项目文件无效: {p} - {e}") from e

    deps = data.get("dependencies", [])
    if not isinstance(deps, list) or not all(isinstance(d, str) and d for d in deps):
        raise ConfigError(f"{p}: dependencies 必须是包名列表")
    manifest = data.get("manifest") or ""
    if not isinstance(manifest, str):
        raise ConfigError(f"{p}: manifest 必须是字符串")

    spec = ProjectSpec(
        root_dir=p.parent,
        dependencies=tuple(deps),
        manifest=manifest,
    )
    logger.info("项目 %s: %d 个直接依赖", p, len(spec.dependencies))
    return spec
