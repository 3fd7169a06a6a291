import queue
import sys
import threading
from typing import Callable, Optional, TextIO

from uidfetch.models import FetchResult


_SENTINEL = None


class ResultSink:
    """单消费者线程：从无界队列取出结果并逐行写出 JSONL"""

    def __init__(self, stream: TextIO, on_emit: Optional[Callable[[FetchResult], None]] = None):
        self.stream = stream
        self.on_emit = on_emit
        self.emitted = 0
        self.write_errors = 0
        self._queue: "queue.Queue[Optional[FetchResult]]" = queue.Queue()
        self._thread = threading.Thread(target=self._drain, name="result-sink", daemon=True)
        self._closed = False

    def start(self) -> "ResultSink":
        self._thread.start()
        return self

    def publish(self, result: FetchResult) -> None:
        # 无界队列，生产者永不阻塞
        self._queue.put(result)

    def close(self) -> None:
        # 所有 worker 结束后调用，等待队列排空
        if not self._closed:
            self._closed = True
            self._queue.put(_SENTINEL)
        self._thread.join()

    def _write(self, result: FetchResult) -> bool:
        """写出一行，失败只提示一次，后续结果继续处理"""
        try:
            self.stream.write(result.to_json_line() + "\n")
            self.stream.flush()
        except (OSError, ValueError) as e:
            self.write_errors += 1
            if self.write_errors == 1:
                print(f"[SINK] Failed to write result for uid {result.uid}: {e}", file=sys.stderr)
            return False
        return True

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _SENTINEL:
                break
            if self._write(item):
                self.emitted += 1
            if self.on_emit is not None:
                self.on_emit(item)
