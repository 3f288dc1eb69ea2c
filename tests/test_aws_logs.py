import threading
from datetime import datetime

import pytest

from lambda_kit.aws_logs import LogService, format_event, is_framework_line
from lambda_kit.exceptions import RemoteFaultError


class FakeLogs:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.streams = [{"logStreamName": "2024/01/01/[$LATEST]abc"}]
        self.pages: list[dict] = []
        self.describe_error = None
        self.delete_error = None
        self.filter_kwargs: list[dict] = []

    def describe_log_streams(self, **kwargs):
        self.calls.append("describe_log_streams")
        if self.describe_error is not None:
            raise self.describe_error
        return {"logStreams": self.streams}

    def create_log_group(self, logGroupName):  # noqa: N803
        self.calls.append(f"create_log_group:{logGroupName}")

    def filter_log_events(self, **kwargs):
        self.calls.append("filter_log_events")
        self.filter_kwargs.append(kwargs)
        index = len(self.filter_kwargs) - 1
        return self.pages[index] if index < len(self.pages) else {"events": []}

    def delete_log_group(self, logGroupName):  # noqa: N803
        self.calls.append(f"delete_log_group:{logGroupName}")
        if self.delete_error is not None:
            raise self.delete_error


def _event(ts: int, message: str) -> dict:
    return {"timestamp": ts, "message": message}


def test_framework_lines_are_detected() -> None:
    assert is_framework_line("START RequestId: 1234 Version: $LATEST")
    assert is_framework_line("END RequestId: 1234")
    assert is_framework_line("REPORT RequestId: 1234\tDuration: 1 ms")
    assert not is_framework_line("user says hi")


def test_format_event_uses_seconds() -> None:
    ts = 1_700_000_000_123
    expected = datetime.fromtimestamp(ts // 1000).strftime("%Y-%m-%d %H:%M:%S")

    assert format_event(_event(ts, "hello\n")) == f"[{expected}] hello"


def test_fetch_events_paginates_and_sorts() -> None:
    client = FakeLogs()
    client.pages = [
        {"events": [_event(300, "c"), _event(100, "a")], "nextToken": "t1"},
        {"events": [_event(200, "b")]},
    ]

    events = LogService(client, "shop-dev").fetch_events(0)

    assert [e["message"] for e in events] == ["a", "b", "c"]
    assert "nextToken" not in client.filter_kwargs[0]
    assert client.filter_kwargs[1]["nextToken"] == "t1"
    assert client.filter_kwargs[0]["logGroupName"] == "/aws/lambda/shop-dev"


def test_missing_group_is_created(client_error) -> None:
    client = FakeLogs()
    client.describe_error = client_error("ResourceNotFoundException", "group missing")

    assert LogService(client, "shop-dev").fetch_events(0) == []
    assert client.calls == ["describe_log_streams", "create_log_group:/aws/lambda/shop-dev"]


def test_poll_filters_framework_lines_and_advances_cursor() -> None:
    printed: list[str] = []
    client = FakeLogs()
    client.pages = [
        {
            "events": [
                _event(1_000, "old"),
                _event(5_000, "START RequestId: 1"),
                _event(6_000, "user line"),
                _event(7_000, "END RequestId: 1"),
            ]
        }
    ]

    cursor = LogService(client, "shop-dev", echo=printed.append).poll(1_000)

    assert cursor == 7_000
    assert len(printed) == 1 and printed[0].endswith("user line")


def test_poll_without_new_events_keeps_cursor() -> None:
    service = LogService(FakeLogs(), "shop-dev", echo=lambda _: None)

    assert service.poll(42_000) == 42_000


def test_watch_stops_on_event() -> None:
    stop = threading.Event()
    client = FakeLogs()
    client.pages = [{"events": [_event(200_000, "first")]}]

    def echo(_line: str) -> None:
        stop.set()

    LogService(client, "shop-dev", echo=echo, poll_interval=0).watch(stop)

    assert client.filter_kwargs[0]["startTime"] == 100_000
    assert stop.is_set()


def test_clear_ignores_missing_group(client_error) -> None:
    client = FakeLogs()
    client.delete_error = client_error("ResourceNotFoundException", "gone")

    LogService(client, "shop-dev").clear()

    assert client.calls == ["delete_log_group:/aws/lambda/shop-dev"]


def test_clear_raises_other_errors(client_error) -> None:
    client = FakeLogs()
    client.delete_error = client_error("AccessDeniedException", "denied")

    with pytest.raises(RemoteFaultError):
        LogService(client, "shop-dev").clear("API-Gateway-Execution-Logs_abc/dev")
