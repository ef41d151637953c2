"""集中配置管理

支持从 YAML 文件加载 + 编程式覆盖。
配置中的相对路径一律相对调用方显式传入的 base_dir 解析，不依赖进程工作目录。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

import yaml

from pinset.core.exceptions import ConfigError
from pinset.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "pinset.yml"

TRANSPORTS = ("auto", "git", "archive", "local")


@dataclass
class Config:
    """全局配置"""

    # 文件与目录
    manifest: str = "package-set.yml"
    project_file: str = "project.yml"
    cache_dir: str = ".pinset"
    source_dir: str = "src"

    # 拉取
    max_workers: int = 8
    fetch_timeout: int = 600
    transport: str = "auto"

    # 放不到字段里的配置项
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，文件不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (ValueError, OSError, yaml.YAMLError) as e:
            raise ConfigError(f"配置文件无效: {path} - {e}") from e
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ConfigError(f"max_workers 必须是正整数: {self.max_workers!r}")
        if not isinstance(self.fetch_timeout, int) or self.fetch_timeout < 1:
            raise ConfigError(f"fetch_timeout 必须是正整数: {self.fetch_timeout!r}")
        if self.transport not in TRANSPORTS:
            raise ConfigError(
                f"不支持的 transport: {self.transport!r}，可选: {', '.join(TRANSPORTS)}"
            )
        for name in ("manifest", "project_file", "cache_dir"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ConfigError(f"{name} 必须是非空字符串: {value!r}")

    @staticmethod
    def resolve_path(base_dir: str | Path, value: str | Path) -> Path:
        """相对路径按 base_dir 解析，绝对路径原样返回"""
        p = Path(value).expanduser()
        if p.is_absolute():
            return p
        return Path(base_dir) / p

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str | Path = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current


def reset_config() -> None:
    """恢复默认配置（仅用于测试）"""
    global _current  # noqa: PLW0603
    _current = None
