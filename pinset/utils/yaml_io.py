"""YAML 读写工具

集中管理 YAML 的解析与序列化:
- 统一 encoding="utf-8" 与大小上限
- 写入走原子替换，中途崩溃不会留下半个文件
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# YAML 文档最大大小 (10MB)
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """原子写入文件：先写同目录临时文件再 os.replace

    异常:
        OSError: 写入或替换失败（临时文件会被清理）
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def parse_yaml(text: str, *, origin: str = "<string>") -> Any:
    """解析 YAML 文本，返回任意 YAML 值（空文档返回 None）

    异常:
        ValueError: 文本超过 MAX_YAML_SIZE
        yaml.YAMLError: 语法错误
    """
    size = len(text.encode("utf-8"))
    if size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文档过大: {origin} ({size} 字节), 超过限制 {MAX_YAML_SIZE} 字节"
        )
    return yaml.safe_load(text)


def read_text(path: str | Path) -> str:
    """读取 UTF-8 文本文件，超过 MAX_YAML_SIZE 时报错"""
    p = Path(path)
    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({file_size} 字节), 超过限制 {MAX_YAML_SIZE} 字节"
        )
    return p.read_text(encoding="utf-8")


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 映射文件

    返回:
        dict: 文件不存在或为空时返回空字典

    异常:
        ValueError: 文件过大，或顶层不是映射
        yaml.YAMLError: 语法错误
    """
    p = Path(path)
    if not p.exists():
        return {}
    try:
        data = parse_yaml(read_text(p), origin=str(p))
    except yaml.YAMLError as e:
        logger.error("解析 YAML 文件失败: %s, 错误: %s", p, e)
        raise
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"{p} 顶层必须是映射 (实际类型: {type(data).__name__})"
        )
    return data


def save_yaml(path: str | Path, data: Any) -> None:
    """原子写入 YAML 文件，保持键顺序"""
    content = yaml.dump(
        data, default_flow_style=False,
        allow_unicode=True, sort_keys=False,
    )
    atomic_write(Path(path), content)
