"""
Service Layer Module Initialization
"""

from claude_relay.services.log_service import FileLogSink, LogSink, RequestLogShipper
from claude_relay.services.relay_service import RelayService

__all__ = [
    "RelayService",
    "LogSink",
    "FileLogSink",
    "RequestLogShipper",
]
