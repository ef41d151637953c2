"""缓存感知的包拉取器

职责:
- 缓存优先: (source, revision) 已发布则直接返回，不触发任何网络活动
- 未命中时委托 Transport 拉取到暂存目录，成功后发布为缓存条目
- 同一缓存键同时最多一个拉取在进行，并发请求者共享结果
- 批量拉取: 不同缓存键并行，汇总全部失败项
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from pinset.core.dep.cache import PackageCache
from pinset.core.dep.models import CacheEntry, CacheKey, PackageDescriptor
from pinset.core.dep.singleflight import FlightInterrupted, SingleFlight
from pinset.core.exceptions import BatchFailure, TransportFailure
from pinset.core.protocols import Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchStats:
    """拉取统计快照"""

    hits: int = 0      # 缓存命中
    fetched: int = 0   # 实际调用了 Transport 并成功发布
    shared: int = 0    # 等待并复用了其他调用者的拉取
    failed: int = 0

    def __sub__(self, other: FetchStats) -> FetchStats:
        return FetchStats(
            hits=self.hits - other.hits,
            fetched=self.fetched - other.fetched,
            shared=self.shared - other.shared,
            failed=self.failed - other.failed,
        )


class PackageFetcher:
    """包拉取器 - 缓存优先 + 单飞合并 + 并行批量"""

    def __init__(
        self,
        cache: PackageCache,
        transport: Transport,
        *,
        max_workers: int = 8,
    ) -> None:
        self.cache = cache
        self.transport = transport
        self.max_workers = max(1, max_workers)
        self._flights: SingleFlight[CacheKey, CacheEntry] = SingleFlight()
        self._stats_lock = threading.Lock()
        self._stats = FetchStats()

    @property
    def stats(self) -> FetchStats:
        with self._stats_lock:
            return self._stats

    def _count(self, **delta: int) -> None:
        with self._stats_lock:
            s = self._stats
            self._stats = FetchStats(
                hits=s.hits + delta.get("hits", 0),
                fetched=s.fetched + delta.get("fetched", 0),
                shared=s.shared + delta.get("shared", 0),
                failed=s.failed + delta.get("failed", 0),
            )

    # ------------------------------------------------------------------
    # 单个包
    # ------------------------------------------------------------------

    def ensure_installed(self, descriptor: PackageDescriptor) -> Path:
        """确保包的源码快照已在缓存中，返回快照根目录

        异常:
            TransportFailure: 拉取失败（不会写入缓存）
        """
        key = descriptor.key
        ctx = {"package": descriptor.name, "cache_key": str(key)}

        entry = self.cache.lookup(key)
        if entry is not None:
            logger.info("缓存命中: %s -> %s", descriptor.name, entry.path, extra=ctx)
            self._count(hits=1)
            return entry.path

        try:
            entry, shared = self._flights.do(key, lambda: self._fetch(key, descriptor.name))
        except FlightInterrupted as e:
            self._count(failed=1)
            raise TransportFailure(key.source, key.revision, e) from e
        except TransportFailure:
            self._count(failed=1)
            raise

        if shared:
            logger.info("复用并发拉取结果: %s -> %s", descriptor.name, entry.path, extra=ctx)
            self._count(shared=1)
        return entry.path

    def _fetch(self, key: CacheKey, name: str) -> CacheEntry:
        """leader 执行的实际拉取；抢到执行权后再查一次缓存"""
        ctx = {"package": name, "cache_key": str(key)}
        entry = self.cache.lookup(key)
        if entry is not None:
            self._count(hits=1)
            return entry

        staging: Path | None = None
        logger.info("远程拉取: %s (%s)", name, key, extra=ctx)
        try:
            staging = self.cache.new_staging(key)
            self.transport.fetch(key.source, key.revision, staging)
            entry = self.cache.publish(key, staging)
        except Exception as e:
            if staging is not None:
                self.cache.discard(staging)
            logger.error("拉取失败: %s (%s): %s", name, key, e, extra=ctx)
            raise TransportFailure(key.source, key.revision, e) from e
        except BaseException:
            if staging is not None:
                self.cache.discard(staging)
            logger.warning("拉取被中断，未写入缓存: %s (%s)", name, key, extra=ctx)
            raise

        self._count(fetched=1)
        logger.info("已安装: %s -> %s", name, entry.path, extra=ctx)
        return entry

    # ------------------------------------------------------------------
    # 批量
    # ------------------------------------------------------------------

    def ensure_installed_all(self, packages: Iterable[PackageDescriptor]) -> dict[str, Path]:
        """拉取全部包，返回 {name: 快照根目录}

        某个包失败不影响其他包的拉取与缓存；全部完成后若有失败，
        抛出列出所有失败项的 BatchFailure。
        """
        descriptors = list(packages)
        results: dict[str, Path] = {}
        failures: dict[str, TransportFailure] = {}

        if self.max_workers == 1 or len(descriptors) <= 1:
            for pkg in descriptors:
                try:
                    results[pkg.name] = self.ensure_installed(pkg)
                except TransportFailure as e:
                    failures[pkg.name] = e
        else:
            workers = min(self.max_workers, len(descriptors))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pinset-fetch") as pool:
                futures = [(pkg, pool.submit(self.ensure_installed, pkg)) for pkg in descriptors]
                for pkg, future in futures:
                    try:
                        results[pkg.name] = future.result()
                    except TransportFailure as e:
                        failures[pkg.name] = e

        if failures:
            logger.warning(
                "拉取汇总: %d 成功, %d 失败 (%s)",
                len(results), len(failures), ", ".join(sorted(failures)),
            )
            raise BatchFailure(failures)
        return results
