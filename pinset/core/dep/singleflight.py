"""请求合并 (single-flight)

同一个键同时只允许一个调用在执行：第一个调用者成为 leader 执行函数，
其余调用者等待 leader 的 Future，拿到同一个结果或同一个异常对象。
执行结束后键从表中移除，之后的调用会重新执行（失败不会被记住）。
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from concurrent.futures import Future
from typing import Generic, TypeVar

from pinset.core.exceptions import PinsetError

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class FlightInterrupted(PinsetError):
    """leader 被 KeyboardInterrupt / SystemExit 等中断，followers 收到此异常"""

    code = "FLIGHT_INTERRUPTED"

    def __init__(self, key: object) -> None:
        super().__init__(f"进行中的请求被中断: {key}")
        self.key = key


class SingleFlight(Generic[K, V]):
    """按键合并并发请求"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[K, Future[V]] = {}
        self._waiting: dict[K, int] = {}

    def do(self, key: K, fn: Callable[[], V]) -> tuple[V, bool]:
        """执行或加入 key 对应的请求

        返回:
            (结果, shared)，shared 为 True 表示结果来自其他调用者的执行
        """
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if future is None:
                future = Future()
                self._calls[key] = future
            else:
                self._waiting[key] = self._waiting.get(key, 0) + 1

        if not leader:
            logger.debug("等待进行中的请求: %s", key)
            try:
                return future.result(), True
            finally:
                with self._lock:
                    left = self._waiting.get(key, 1) - 1
                    if left > 0:
                        self._waiting[key] = left
                    else:
                        self._waiting.pop(key, None)

        try:
            value = fn()
        except Exception as exc:
            future.set_exception(exc)
            raise
        except BaseException:
            future.set_exception(FlightInterrupted(key))
            raise
        else:
            future.set_result(value)
            return value, False
        finally:
            with self._lock:
                self._calls.pop(key, None)

    def waiting(self, key: K) -> int:
        """正在等待 key 结果的 follower 数量"""
        with self._lock:
            return self._waiting.get(key, 0)

    def in_flight(self, key: K) -> bool:
        with self._lock:
            return key in self._calls

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)
