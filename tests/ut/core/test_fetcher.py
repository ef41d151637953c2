"""缓存感知拉取测试 - 幂等、单飞、批量失败汇总"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from helpers import FakeTransport

from pinset.core.dep.cache import ENTRY_MARKER, STAGING_DIR, PackageCache
from pinset.core.dep.fetcher import FetchStats, PackageFetcher
from pinset.core.dep.models import CacheKey, PackageDescriptor
from pinset.core.dep.singleflight import FlightInterrupted
from pinset.core.exceptions import BatchFailure, TransportFailure


def _pkg(name: str, revision: str = "v1.0.0", source: str | None = None) -> PackageDescriptor:
    return PackageDescriptor(name, source or f"https://example.com/{name}.git", revision)


def _fetcher(tmp_path: Path, transport: FakeTransport, workers: int = 4) -> PackageFetcher:
    return PackageFetcher(PackageCache(tmp_path / "cache"), transport, max_workers=workers)


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("等待条件超时")
        time.sleep(0.005)


class TestEnsureInstalled:
    def test_fetch_then_cache_hit(self, tmp_path: Path, transport: FakeTransport) -> None:
        """第二次调用不触发传输层"""
        fetcher = _fetcher(tmp_path, transport)
        pkg = _pkg("base")

        first = fetcher.ensure_installed(pkg)
        second = fetcher.ensure_installed(pkg)

        assert first == second
        assert transport.count(pkg.source, pkg.revision) == 1
        assert (first / "src" / "lib.mo").read_text(encoding="utf-8") == f"{pkg.source}@v1.0.0"
        assert fetcher.stats == FetchStats(hits=1, fetched=1)

    def test_cache_survives_new_fetcher(self, tmp_path: Path, transport: FakeTransport) -> None:
        pkg = _pkg("base")
        path = _fetcher(tmp_path, transport).ensure_installed(pkg)

        other = FakeTransport()
        assert _fetcher(tmp_path, other).ensure_installed(pkg) == path
        assert other.calls == []

    def test_same_key_shared_by_different_names(
        self, tmp_path: Path, transport: FakeTransport,
    ) -> None:
        fetcher = _fetcher(tmp_path, transport)
        a = _pkg("a", source="https://example.com/shared.git")
        b = _pkg("b", source="https://example.com/shared.git")
        assert fetcher.ensure_installed(a) == fetcher.ensure_installed(b)
        assert len(transport.calls) == 1

    def test_distinct_revisions_distinct_paths(
        self, tmp_path: Path, transport: FakeTransport,
    ) -> None:
        fetcher = _fetcher(tmp_path, transport)
        v1 = fetcher.ensure_installed(_pkg("base", "v1"))
        v2 = fetcher.ensure_installed(_pkg("base", "v2"))
        assert v1 != v2
        assert len(transport.calls) == 2

    def test_failure_leaves_no_entry(self, tmp_path: Path) -> None:
        pkg = _pkg("broken")
        transport = FakeTransport(fail={pkg.source})
        fetcher = _fetcher(tmp_path, transport)

        with pytest.raises(TransportFailure) as exc_info:
            fetcher.ensure_installed(pkg)

        assert exc_info.value.key == CacheKey(pkg.source, pkg.revision)
        assert exc_info.value.code == "TRANSPORT_FAILURE"
        assert fetcher.cache.lookup(pkg.key) is None
        assert list((tmp_path / "cache" / STAGING_DIR).iterdir()) == []
        assert fetcher.stats.failed == 1

    def test_failure_is_retried(self, tmp_path: Path) -> None:
        """失败不被缓存，下一次调用重新拉取"""
        pkg = _pkg("flaky")
        transport = FakeTransport(fail={pkg.source})
        fetcher = _fetcher(tmp_path, transport)
        with pytest.raises(TransportFailure):
            fetcher.ensure_installed(pkg)

        transport.fail.clear()
        assert fetcher.ensure_installed(pkg).is_dir()
        assert transport.count(pkg.source, pkg.revision) == 2


    def test_missing_marker_is_refetched(self, tmp_path: Path, transport: FakeTransport) -> None:
        """标记文件丢失的条目重新拉取并覆盖残留目录"""
        fetcher = _fetcher(tmp_path, transport)
        pkg = _pkg("base", "v1")
        path = fetcher.ensure_installed(pkg)
        (path / ENTRY_MARKER).unlink()

        assert fetcher.ensure_installed(pkg) == path
        assert (path / ENTRY_MARKER).is_file()
        assert fetcher.cache.lookup(pkg.key) is not None
        assert transport.count(pkg.source, "v1") == 2
        assert list((tmp_path / "cache" / STAGING_DIR).iterdir()) == []

    def test_unwritable_cache_is_transport_failure(self, tmp_path: Path) -> None:
        (tmp_path / "cache").write_text("", encoding="utf-8")
        transport = FakeTransport()
        with pytest.raises(TransportFailure) as exc_info:
            _fetcher(tmp_path, transport).ensure_installed(_pkg("base"))
        assert isinstance(exc_info.value.cause, OSError)
        assert transport.calls == []


class InterruptingTransport(FakeTransport):
    """拉取过程中抛出 KeyboardInterrupt"""

    def fetch(self, source: str, revision: str, dest: Path) -> None:
        (dest / "partial.mo").write_text("", encoding="utf-8")
        super().fetch(source, revision, dest)
        raise KeyboardInterrupt


class TestInterrupted:
    def test_nothing_published(self, tmp_path: Path) -> None:
        fetcher = _fetcher(tmp_path, InterruptingTransport())
        pkg = _pkg("base")
        with pytest.raises(KeyboardInterrupt):
            fetcher.ensure_installed(pkg)
        assert fetcher.cache.lookup(pkg.key) is None
        assert not fetcher.cache.path_for(pkg.key).exists()
        assert list((tmp_path / "cache" / STAGING_DIR).iterdir()) == []

    def test_follower_sees_failure(self, tmp_path: Path) -> None:
        gate = threading.Event()
        fetcher = _fetcher(tmp_path, InterruptingTransport(gate=gate))
        pkg = _pkg("base")
        outcomes: dict[str, BaseException] = {}

        def call(role: str) -> None:
            try:
                fetcher.ensure_installed(pkg)
            except BaseException as e:  # noqa: BLE001
                outcomes[role] = e

        leader = threading.Thread(target=call, args=("leader",))
        leader.start()
        _wait_for(lambda: fetcher._flights.in_flight(pkg.key))
        follower = threading.Thread(target=call, args=("follower",))
        follower.start()
        _wait_for(lambda: fetcher._flights.waiting(pkg.key) == 1)
        gate.set()
        leader.join(timeout=5)
        follower.join(timeout=5)

        assert isinstance(outcomes["leader"], KeyboardInterrupt)
        failure = outcomes["follower"]
        assert isinstance(failure, TransportFailure)
        assert isinstance(failure.cause, FlightInterrupted)
        assert fetcher.cache.lookup(pkg.key) is None
        assert list((tmp_path / "cache" / STAGING_DIR).iterdir()) == []


class TestConcurrency:
    """同一缓存键的并发请求只触发一次传输"""

    N = 6

    def test_concurrent_requests_single_fetch(self, tmp_path: Path) -> None:
        gate = threading.Event()
        transport = FakeTransport(gate=gate)
        fetcher = _fetcher(tmp_path, transport)
        pkg = _pkg("base")

        with ThreadPoolExecutor(max_workers=self.N) as pool:
            futures = [pool.submit(fetcher.ensure_installed, pkg) for _ in range(self.N)]
            _wait_for(lambda: fetcher._flights.waiting(pkg.key) == self.N - 1)
            gate.set()
            paths = {f.result() for f in futures}

        assert len(paths) == 1
        assert transport.count(pkg.source, pkg.revision) == 1
        assert fetcher.stats.fetched == 1
        assert fetcher.stats.shared == self.N - 1

    def test_concurrent_failure_shared(self, tmp_path: Path) -> None:
        """leader 失败时所有等待者收到同一个失败"""
        gate = threading.Event()
        pkg = _pkg("broken")
        transport = FakeTransport(fail={pkg.source}, gate=gate)
        fetcher = _fetcher(tmp_path, transport)

        with ThreadPoolExecutor(max_workers=self.N) as pool:
            futures = [pool.submit(fetcher.ensure_installed, pkg) for _ in range(self.N)]
            _wait_for(lambda: fetcher._flights.waiting(pkg.key) == self.N - 1)
            gate.set()
            errors = [f.exception() for f in futures]

        assert all(isinstance(e, TransportFailure) for e in errors)
        assert {e.key for e in errors} == {pkg.key}
        assert transport.count(pkg.source, pkg.revision) == 1
        assert fetcher.cache.lookup(pkg.key) is None
        assert fetcher.stats.failed == self.N


class TestBatch:
    @pytest.mark.parametrize("workers", [1, 4])
    def test_all_succeed(self, tmp_path: Path, transport: FakeTransport, workers: int) -> None:
        fetcher = _fetcher(tmp_path, transport, workers)
        pkgs = [_pkg("a"), _pkg("b"), _pkg("c")]
        result = fetcher.ensure_installed_all(pkgs)
        assert set(result) == {"a", "b", "c"}
        assert len(set(result.values())) == 3

    @pytest.mark.parametrize("workers", [1, 4])
    def test_partial_failure(self, tmp_path: Path, workers: int) -> None:
        """一个包失败不影响其余包写入缓存"""
        pkgs = [_pkg("pkg1"), _pkg("pkg2"), _pkg("pkg3")]
        transport = FakeTransport(fail={pkgs[1].source})
        fetcher = _fetcher(tmp_path, transport, workers)

        with pytest.raises(BatchFailure) as exc_info:
            fetcher.ensure_installed_all(pkgs)

        err = exc_info.value
        assert set(err.failures) == {"pkg2"}
        assert err.keys == [pkgs[1].key]
        assert pkgs[1].source in str(err)
        assert fetcher.cache.lookup(pkgs[0].key) is not None
        assert fetcher.cache.lookup(pkgs[2].key) is not None

        # 再次批量安装: 已成功的包不再拉取
        transport.fail.clear()
        result = fetcher.ensure_installed_all(pkgs)
        assert set(result) == {"pkg1", "pkg2", "pkg3"}
        assert transport.count(pkgs[0].source, "v1.0.0") == 1
        assert transport.count(pkgs[2].source, "v1.0.0") == 1
        assert transport.count(pkgs[1].source, "v1.0.0") == 2

    def test_multiple_failures_listed(self, tmp_path: Path) -> None:
        pkgs = [_pkg("a"), _pkg("b"), _pkg("c")]
        transport = FakeTransport(fail={pkgs[0].source, pkgs[2].source})
        with pytest.raises(BatchFailure) as exc_info:
            _fetcher(tmp_path, transport).ensure_installed_all(pkgs)
        assert sorted(exc_info.value.failures) == ["a", "c"]
        assert "2 个包拉取失败" in str(exc_info.value)

    def test_empty(self, tmp_path: Path, transport: FakeTransport) -> None:
        assert _fetcher(tmp_path, transport).ensure_installed_all([]) == {}
        assert transport.calls == []

    def test_unwritable_cache_reported_as_batch(self, tmp_path: Path) -> None:
        """缓存目录不可写时批量拉取仍汇总全部失败项"""
        (tmp_path / "cache").write_text("", encoding="utf-8")
        pkgs = [_pkg("a"), _pkg("b"), _pkg("c")]
        with pytest.raises(BatchFailure) as exc_info:
            _fetcher(tmp_path, FakeTransport()).ensure_installed_all(pkgs)
        assert sorted(exc_info.value.failures) == ["a", "b", "c"]
        assert exc_info.value.keys == sorted((p.key for p in pkgs), key=lambda k: k.source)
