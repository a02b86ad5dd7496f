"""
进度汇报 - 按顺序向调用方推送可读的进度事件
Progress reporting - pushes ordered, human-readable progress events to the
caller.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressSink(Protocol):
    """进度接收者协议 / Progress sink protocol."""

    def on_progress(self, message: str) -> None:
        ...


class CallbackProgressSink:
    """把普通回调包装成接收者 / Wraps a plain callable as a sink."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        self._callback = callback

    def on_progress(self, message: str) -> None:
        self._callback(message)


class BufferedProgressSink:
    """
    有界进度通道 - 循环写入，调用方自行取出
    Bounded progress channel - the loop writes, the caller drains.

    缓冲区满时丢弃最旧的事件。
    When full, the oldest events are dropped.
    """

    def __init__(self, maxlen: int = 256) -> None:
        self._buffer: deque[str] = deque(maxlen=maxlen)
        self._dropped = 0

    def on_progress(self, message: str) -> None:
        if self._buffer.maxlen is not None and len(self._buffer) == self._buffer.maxlen:
            self._dropped += 1
        self._buffer.append(message)

    @property
    def dropped(self) -> int:
        return self._dropped

    def __len__(self) -> int:
        return len(self._buffer)

    def drain(self) -> list[str]:
        """取出并清空全部事件 / Take and clear every buffered event."""
        items = list(self._buffer)
        self._buffer.clear()
        return items


class ProgressReporter:
    """
    进度汇报器 - 记录日志并按顺序转发；接收者异常只记录不传播
    Progress reporter - logs and forwards in order; sink exceptions are logged
    and never propagate.
    """

    def __init__(self, sink: ProgressSink | Callable[[str], None] | None = None) -> None:
        if sink is None or isinstance(sink, ProgressSink):
            self._sink = sink
        else:
            self._sink = CallbackProgressSink(sink)
        self._emitted = 0

    @property
    def emitted(self) -> int:
        return self._emitted

    def emit(self, message: str) -> None:
        self._emitted += 1
        logger.info("%s", message)
        if self._sink is None:
            return
        try:
            self._sink.on_progress(message)
        except Exception:
            logger.exception("进度回调失败，已忽略")
