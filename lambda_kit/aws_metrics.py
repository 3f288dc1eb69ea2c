"""
aws_metrics
-----------

최근 24시간의 Lambda 호출 수/에러 수를 CloudWatch 에서 읽어 요약한다.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .aws_clients import remote_fault
from .logging_utils import get_logger


INVOCATION_METRIC = "Invocations"
ERROR_METRIC = "Errors"
WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class MetricsSummary:
    invocations: float
    errors: float

    @property
    def error_rate(self) -> float:
        if not self.invocations:
            return 0.0
        return self.errors / self.invocations * 100

    def render(self, function_name: str) -> str:
        lines = [
            f"# Metrics (last 24h): {function_name}",
            f"- invocations: {int(self.invocations)}",
            f"- errors: {int(self.errors)}",
            f"- error rate: {self.error_rate:.2f}%",
        ]
        return "\n".join(lines)


class MetricsReporter:
    def __init__(self, client: Any, function_name: str, logger: Optional[logging.Logger] = None) -> None:
        self.client = client
        self.function_name = function_name
        self.logger = get_logger(__name__, logger)

    def _sum(self, metric: str, now: datetime) -> float:
        try:
            resp = self.client.get_metric_statistics(
                Namespace="AWS/Lambda",
                MetricName=metric,
                Dimensions=[{"Name": "FunctionName", "Value": self.function_name}],
                StartTime=now - WINDOW,
                EndTime=now,
                Period=int(WINDOW.total_seconds()),
                Statistics=["Sum"],
            )
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("CloudWatch GetMetricStatistics", e) from e
        # 호출 이력이 없으면 datapoint 가 비어 있다.
        return sum(dp.get("Sum", 0.0) for dp in resp.get("Datapoints", []))

    def summary(self, now: Optional[datetime] = None) -> MetricsSummary:
        now = now or datetime.now(timezone.utc)
        self.logger.debug("CloudWatch 지표 조회: %s", self.function_name)
        return MetricsSummary(
            invocations=self._sum(INVOCATION_METRIC, now),
            errors=self._sum(ERROR_METRIC, now),
        )
