"""测试辅助 - 假传输层 + 清单构造

FakeTransport 替代网络拉取:
  - 记录每次 fetch 调用（线程安全）
  - 向 dest 写入 src/lib.mo，内容为 "<source>@<revision>"
  - fail: 指定 source 集合，拉取这些 source 时抛 TransportError
  - gate: 设置后 fetch 会阻塞直到 gate.set()，用于构造并发场景
"""

from __future__ import annotations

import threading
from pathlib import Path

import yaml

from pinset.core.exceptions import TransportError


class FakeTransport:
    def __init__(
        self,
        fail: set[str] | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.fail = fail or set()
        self.gate = gate
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def fetch(self, source: str, revision: str, dest: Path) -> None:
        with self._lock:
            self.calls.append((source, revision))
        if self.gate is not None:
            assert self.gate.wait(timeout=10), "gate 未在超时前放行"
        if source in self.fail:
            raise TransportError(f"模拟网络故障: {source}")
        src = dest / "src"
        src.mkdir(parents=True, exist_ok=True)
        (src / "lib.mo").write_text(f"{source}@{revision}", encoding="utf-8")

    def count(self, source: str, revision: str) -> int:
        with self._lock:
            return self.calls.count((source, revision))


def record(name: str, deps: list[str] | None = None, **fields: str) -> dict:
    """构造一条清单记录，source/revision 默认按包名生成"""
    return {
        "name": name,
        "source": fields.get("source", f"https://example.com/{name}.git"),
        "revision": fields.get("revision", "v1.0.0"),
        "dependencies": deps or [],
        **{k: v for k, v in fields.items() if k not in ("source", "revision")},
    }


def manifest_text(*records: dict) -> str:
    return yaml.safe_dump(list(records), allow_unicode=True, sort_keys=False)
