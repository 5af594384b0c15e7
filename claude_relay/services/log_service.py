"""
Request Log Service

Ships one JSON record per relayed request to a log sink. Shipping runs as a
detached task: its failures are logged and never reach the request path.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class LogSink(ABC):
    """Destination for request log records."""

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """
        Store one record

        Args:
            key: Object key, `<prefix>/<YYYYMMDD>/<request_id>.json`
            data: Encoded record
        """


class FileLogSink(LogSink):
    """Writes records below a local directory, one file per key."""

    def __init__(self, root: str):
        self.root = Path(root)

    async def put(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, key, data)

    def _write(self, key: str, data: bytes) -> None:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


def _normalize_json(text: str) -> Any:
    if not text:
        return ""
    try:
        return json.loads(text)
    except ValueError:
        return text


class RequestLogShipper:
    """
    Request Log Shipper

    Builds a record for one request and hands it to the sink in the background.
    """

    def __init__(self, sink: LogSink, prefix: str = "relay_logs"):
        """
        Initialize shipper

        Args:
            sink: Log sink (constructed by the caller)
            prefix: Key prefix
        """
        self.sink = sink
        self.prefix = prefix
        self._tasks: set[asyncio.Task] = set()

    def build_key(self, request_id: str, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        return f"{self.prefix}/{now.strftime('%Y%m%d')}/{request_id}.json"

    def build_record(
        self,
        request_id: str,
        path: str,
        model: str,
        is_streaming: bool,
        request_body: Any,
        response_body: str,
        errors: Optional[list[str]] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Build a log record

        Non-stream responses are stored as decoded JSON when possible;
        streamed responses are stored as the raw SSE text.
        """
        record: dict[str, Any] = {
            "request_id": request_id,
            "request_path": path,
            "original_model": model,
            "is_streaming": is_streaming,
            "request": request_body,
            "response": response_body if is_streaming else _normalize_json(response_body),
            "errors": list(errors or []),
        }
        if extra:
            record.update(extra)
        return record

    def ship(self, record: dict[str, Any]) -> asyncio.Task:
        """
        Upload a record without waiting for it

        Returns:
            asyncio.Task: The detached upload task
        """
        task = asyncio.create_task(self._upload(record))
        # Keep a reference until the task finishes so it is not garbage collected
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _upload(self, record: dict[str, Any]) -> None:
        key = self.build_key(record.get("request_id") or "unknown")
        try:
            data = json.dumps(record, ensure_ascii=False, default=str).encode("utf-8")
            await self.sink.put(key, data)
        except Exception as e:
            logger.error("Failed to upload request log %s: %s", key, e)
            return
        logger.debug("Uploaded request log %s", key)
