"""
aws_logs
--------

CloudWatch Logs 조회(tail)와 로그 그룹 삭제를 담당하는 모듈.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, List, Optional

import click
from botocore.exceptions import BotoCoreError, ClientError

from .aws_clients import is_not_found, remote_fault
from .logging_utils import get_logger


# Lambda 런타임이 요청마다 남기는 프레임워크 라인
FRAMEWORK_MARKERS = ("START RequestId", "REPORT RequestId", "END RequestId")

# 커서 시작값(ms). 사실상 "처음부터".
INITIAL_CURSOR = 100_000
FILTER_PAGE_LIMIT = 10_000


def is_framework_line(message: str) -> bool:
    return any(marker in message for marker in FRAMEWORK_MARKERS)


def format_event(event: dict) -> str:
    ts = datetime.fromtimestamp(event["timestamp"] // 1000)
    return f"[{ts:%Y-%m-%d %H:%M:%S}] {event['message'].strip()}"


class LogService:
    def __init__(
        self,
        client: Any,
        function_name: str,
        *,
        echo: Callable[[str], None] = click.echo,
        poll_interval: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.function_name = function_name
        self.echo = echo
        self.poll_interval = poll_interval
        self.logger = get_logger(__name__, logger)

    @property
    def group_name(self) -> str:
        return f"/aws/lambda/{self.function_name}"

    def _stream_names(self) -> List[str]:
        try:
            resp = self.client.describe_log_streams(
                logGroupName=self.group_name,
                orderBy="LastEventTime",
                descending=True,
            )
        except (ClientError, BotoCoreError) as e:
            if not is_not_found(e):
                raise remote_fault("Logs DescribeLogStreams", e) from e
            # 아직 한 번도 호출되지 않은 함수는 로그 그룹이 없다.
            self.logger.debug("로그 그룹이 없어 생성합니다: %s", self.group_name)
            try:
                self.client.create_log_group(logGroupName=self.group_name)
            except (ClientError, BotoCoreError) as ce:
                raise remote_fault("Logs CreateLogGroup", ce) from ce
            return []
        return [s["logStreamName"] for s in resp.get("logStreams", [])]

    def fetch_events(self, start_time: int) -> List[dict]:
        """
        start_time(ms) 이후 이벤트를 nextToken 이 없을 때까지 모아 timestamp 오름차순으로 반환한다.
        """
        stream_names = self._stream_names()
        if not stream_names:
            return []

        events: List[dict] = []
        kwargs: dict = {
            "logGroupName": self.group_name,
            "logStreamNames": stream_names,
            "startTime": start_time,
            "endTime": int(time.time() * 1000),
            "limit": FILTER_PAGE_LIMIT,
        }
        while True:
            try:
                resp = self.client.filter_log_events(**kwargs)
            except (ClientError, BotoCoreError) as e:
                raise remote_fault("Logs FilterLogEvents", e) from e
            events.extend(resp.get("events", []))
            token = resp.get("nextToken")
            if not token:
                break
            kwargs["nextToken"] = token

        events.sort(key=lambda ev: ev["timestamp"])
        return events

    def print_events(self, events: List[dict]) -> None:
        for event in events:
            if is_framework_line(event["message"]):
                continue
            self.echo(format_event(event))

    def poll(self, cursor: int) -> int:
        """
        cursor 이후의 새 이벤트를 출력하고, 마지막 이벤트의 timestamp 를 새 cursor 로 반환한다.
        """
        new_events = [ev for ev in self.fetch_events(cursor) if ev["timestamp"] > cursor]
        self.print_events(new_events)
        if new_events:
            return new_events[-1]["timestamp"]
        return cursor

    def watch(self, stop_event: Optional[threading.Event] = None) -> None:
        """
        stop_event 가 set 될 때까지(또는 KeyboardInterrupt) 로그를 계속 따라간다.
        """
        stop = stop_event or threading.Event()
        cursor = INITIAL_CURSOR
        self.logger.debug("로그 tail 시작: %s", self.group_name)
        while not stop.is_set():
            cursor = self.poll(cursor)
            stop.wait(self.poll_interval)

    def clear(self, group_name: Optional[str] = None) -> None:
        """로그 그룹 삭제. 이미 없으면 조용히 넘어간다."""
        name = group_name or self.group_name
        self.logger.debug("로그 그룹 삭제: %s", name)
        try:
            self.client.delete_log_group(logGroupName=name)
        except (ClientError, BotoCoreError) as e:
            if is_not_found(e):
                self.logger.debug("로그 그룹이 이미 없습니다: %s", name)
                return
            raise remote_fault("Logs DeleteLogGroup", e) from e
