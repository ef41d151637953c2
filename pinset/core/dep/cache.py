"""持久化包缓存

目录布局:
    <root>/<仓库名>/<revision>-<摘要12位>/     已发布的快照
    <root>/<仓库名>/<revision>-<摘要12位>/.pinset-entry.yml
    <root>/.tmp/<随机>/                       拉取中的暂存目录

摘要 = sha256(source + "\\0" + revision)，同一键在任何进程、任何时刻都映射到同一路径。

发布策略:
  - 传输层只写暂存目录，成功后整体 rename 到最终路径
  - 最终路径存在且带标记文件才算缓存命中，半成品永远不可见
  - 其他进程抢先发布了同一键时，丢弃本地暂存、复用已有条目
  - 最终路径存在但没有有效标记（残留目录）时，先移入 .tmp 删除再重试一次
  - 崩溃进程留下的暂存目录由 sweep_staging 按存活时间清理
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import tempfile
import time
from pathlib import Path

import yaml

from pinset.core.dep.models import CacheEntry, CacheKey
from pinset.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

ENTRY_MARKER = ".pinset-entry.yml"
STAGING_DIR = ".tmp"

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _slug(text: str, limit: int = 48) -> str:
    slug = _UNSAFE_RE.sub("_", text).strip("._")
    return slug[:limit] or "pkg"


def key_digest(key: CacheKey) -> str:
    return hashlib.sha256(
        f"{key.source}\0{key.revision}".encode("utf-8"),
    ).hexdigest()


class PackageCache:
    """磁盘包缓存，生命周期跨越多次运行"""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, key: CacheKey) -> Path:
        """计算键对应的最终目录（稳定且不冲突）"""
        repo = key.source.rstrip("/").split("/")[-1].removesuffix(".git")
        return self.root / _slug(repo) / f"{_slug(key.revision)}-{key_digest(key)[:12]}"

    def lookup(self, key: CacheKey) -> CacheEntry | None:
        """查找已发布的条目，未命中返回 None"""
        path = self.path_for(key)
        marker = path / ENTRY_MARKER
        if not marker.is_file():
            return None
        try:
            entry = CacheEntry.from_dict(load_yaml(marker), path)
        except (ValueError, KeyError, OSError, yaml.YAMLError) as e:
            logger.warning("缓存标记文件损坏，视为未命中: %s (%s)", marker, e)
            return None
        if entry.key != key:
            logger.warning("缓存标记与键不一致，视为未命中: %s", marker)
            return None
        return entry

    def new_staging(self, key: CacheKey) -> Path:
        """为一次拉取创建唯一的暂存目录"""
        staging_root = self.root / STAGING_DIR
        staging_root.mkdir(parents=True, exist_ok=True)
        prefix = f"{_slug(key.revision, limit=24)}-"
        return Path(tempfile.mkdtemp(prefix=prefix, dir=str(staging_root)))

    def publish(self, key: CacheKey, staging: Path) -> CacheEntry:
        """把暂存目录原子地发布为缓存条目"""
        final = self.path_for(key)
        entry = CacheEntry(key=key, path=final)
        save_yaml(staging / ENTRY_MARKER, entry.to_dict())

        final.parent.mkdir(parents=True, exist_ok=True)
        for attempt in range(2):
            try:
                os.rename(staging, final)
                break
            except OSError:
                existing = self.lookup(key)
                if existing is not None:
                    logger.info("缓存已由其他进程发布，丢弃本地暂存: %s", key)
                    self.discard(staging)
                    return existing
                if attempt or not final.exists():
                    raise
                self._evict_stale(key, final)
        logger.debug("缓存已发布: %s -> %s", key, final)
        return entry

    def _evict_stale(self, key: CacheKey, final: Path) -> None:
        """把没有有效标记的残留目录移出最终路径并删除"""
        logger.warning("清理残留的缓存目录: %s (%s)", final, key)
        trash = Path(tempfile.mkdtemp(prefix="stale-", dir=str(self.root / STAGING_DIR)))
        try:
            os.rename(final, trash / final.name)
        except FileNotFoundError:
            pass  # 已被其他进程移走
        self.discard(trash)

    @staticmethod
    def discard(staging: Path) -> None:
        """删除暂存目录（失败或中断的拉取）"""
        shutil.rmtree(staging, ignore_errors=True)

    def sweep_staging(self, max_age: float) -> int:
        """删除修改时间早于 max_age 秒前的暂存目录，返回删除数量

        只用于清理崩溃进程留下的目录；max_age 应不小于单次拉取的超时时间。
        """
        staging_root = self.root / STAGING_DIR
        if not staging_root.is_dir():
            return 0
        cutoff = time.time() - max_age
        removed = 0
        for child in staging_root.iterdir():
            try:
                if child.stat().st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue
            if child.is_dir():
                self.discard(child)
            else:
                child.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.info("已清理 %d 个过期暂存目录: %s", removed, staging_root)
        return removed

    def entries(self) -> list[CacheEntry]:
        """列出全部已发布条目，按 (source, revision) 排序"""
        result: list[CacheEntry] = []
        if not self.root.is_dir():
            return result
        for repo_dir in sorted(self.root.iterdir()):
            if not repo_dir.is_dir() or repo_dir.name == STAGING_DIR:
                continue
            for entry_dir in sorted(repo_dir.iterdir()):
                marker = entry_dir / ENTRY_MARKER
                if not marker.is_file():
                    continue
                try:
                    result.append(CacheEntry.from_dict(load_yaml(marker), entry_dir))
                except (ValueError, KeyError, OSError, yaml.YAMLError) as e:
                    logger.warning("跳过损坏的缓存条目: %s (%s)", entry_dir, e)
        return sorted(result, key=lambda e: (e.key.source, e.key.revision))
