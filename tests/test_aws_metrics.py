from datetime import datetime, timezone

import pytest

from lambda_kit.aws_metrics import MetricsReporter, MetricsSummary
from lambda_kit.exceptions import RemoteFaultError


class FakeCloudWatch:
    def __init__(self, datapoints: dict, error=None) -> None:
        self.datapoints = datapoints
        self.error = error
        self.requests: list[dict] = []

    def get_metric_statistics(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"Datapoints": self.datapoints.get(kwargs["MetricName"], [])}


def test_summary_sums_datapoints() -> None:
    client = FakeCloudWatch({"Invocations": [{"Sum": 150.0}, {"Sum": 50.0}], "Errors": [{"Sum": 5.0}]})
    now = datetime(2024, 1, 2, tzinfo=timezone.utc)

    summary = MetricsReporter(client, "shop-dev").summary(now=now)

    assert summary == MetricsSummary(invocations=200.0, errors=5.0)
    assert summary.error_rate == pytest.approx(2.5)
    first = client.requests[0]
    assert first["Namespace"] == "AWS/Lambda"
    assert first["Dimensions"] == [{"Name": "FunctionName", "Value": "shop-dev"}]
    assert first["EndTime"] - first["StartTime"] == now - datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_no_invocations_has_zero_error_rate() -> None:
    summary = MetricsReporter(FakeCloudWatch({}), "shop-dev").summary()

    assert summary.error_rate == 0.0
    rendered = summary.render("shop-dev")
    assert "invocations: 0" in rendered
    assert "error rate: 0.00%" in rendered


def test_remote_error_is_wrapped(client_error) -> None:
    client = FakeCloudWatch({}, error=client_error("AccessDenied", "denied"))

    with pytest.raises(RemoteFaultError):
        MetricsReporter(client, "shop-dev").summary()
