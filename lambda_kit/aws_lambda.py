"""
aws_lambda
----------

Lambda 함수 생성/코드 업데이트/대기/호출/버전 조회/삭제를 담당하는 모듈.

상태 전이:
    생성: Absent -> Creating -> Pending -> Active
    갱신: Active -> Updating -> Pending -> Active
"""

from __future__ import annotations

import base64
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import click
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from .aws_clients import is_not_found, remote_fault
from .config import DeploymentConfig
from .exceptions import FunctionExecutionError, NotDeployedError, WaiterTimeoutError
from .logging_utils import get_logger


NOT_DEPLOYED_MESSAGE = "배포된 프로젝트를 찾을 수 없습니다. 먼저 'lambda-kit deploy' 를 실행하세요."

LATEST = "$LATEST"
DESCRIPTION = "Deployed by lambda-kit"
DEFAULT_WAIT_SECONDS = 20
WAITER_DELAY_SECONDS = 1


@dataclass(frozen=True)
class VersionRevision:
    version: str
    package_type: str = "Zip"
    code_sha256: str = ""

    @property
    def is_latest(self) -> bool:
        return self.version == LATEST

    @classmethod
    def from_api(cls, item: dict) -> "VersionRevision":
        return cls(
            version=item["Version"],
            package_type=item.get("PackageType", "Zip"),
            code_sha256=item.get("CodeSha256", ""),
        )


class ComputeProvisioner:
    def __init__(
        self,
        client: Any,
        cfg: DeploymentConfig,
        *,
        echo: Callable[[str], None] = click.echo,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.cfg = cfg
        self.echo = echo
        self.logger = get_logger(__name__, logger)

    @property
    def function_name(self) -> str:
        return self.cfg.function_name

    def list_versions(self) -> List[VersionRevision]:
        """
        ListVersionsByFunction 전체 페이지를 읽는다. 함수가 없으면 ResourceNotFound 가 그대로 올라간다.
        """
        versions: List[VersionRevision] = []
        kwargs: dict = {"FunctionName": self.function_name}
        while True:
            resp = self.client.list_versions_by_function(**kwargs)
            versions.extend(VersionRevision.from_api(v) for v in resp.get("Versions", []))
            marker = resp.get("NextMarker")
            if not marker:
                return versions
            kwargs["Marker"] = marker

    def is_deployed(self) -> bool:
        try:
            versions = self.list_versions()
        except (ClientError, BotoCoreError) as e:
            if is_not_found(e):
                return False
            raise remote_fault("Lambda ListVersionsByFunction", e) from e
        return len(versions) > 0

    def revisions(self) -> List[VersionRevision]:
        """list_versions 와 같지만 함수가 없으면 NotDeployedError 로 바꿔 올린다."""
        try:
            return self.list_versions()
        except (ClientError, BotoCoreError) as e:
            if is_not_found(e):
                raise NotDeployedError(NOT_DEPLOYED_MESSAGE, cause=e) from e
            raise remote_fault("Lambda ListVersionsByFunction", e) from e

    def get_function(self, qualifier: Optional[str] = None) -> dict:
        kwargs: dict = {"FunctionName": self.function_name}
        if qualifier:
            kwargs["Qualifier"] = qualifier
        return self.client.get_function(**kwargs)

    def code_location(self, version: str) -> str:
        """해당 버전 코드 zip 의 presigned 다운로드 URL."""
        try:
            resp = self.get_function(qualifier=version)
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("Lambda GetFunction", e) from e
        return resp["Code"]["Location"]

    def create(self, artifact_key: str, handler: str, role_arn: str) -> str:
        """
        같은 이름의 함수가 이미 있으면 그 ARN 을 그대로 돌려준다. (재진입 시 중복 생성 방지)
        """
        try:
            existing = self.get_function()
            arn = existing["Configuration"]["FunctionArn"]
            self.logger.info("이미 존재하는 Lambda 함수를 사용합니다: %s", arn)
            return arn
        except (ClientError, BotoCoreError) as e:
            if not is_not_found(e):
                raise remote_fault("Lambda GetFunction", e) from e

        platform = self.cfg.platform
        self.logger.info("Lambda 함수 생성: %s (runtime=%s, handler=%s)", self.function_name, platform.runtime, handler)
        try:
            resp = self.client.create_function(
                FunctionName=self.function_name,
                Description=DESCRIPTION,
                Code={"S3Bucket": self.cfg.bucket, "S3Key": artifact_key},
                Role=role_arn,
                Runtime=platform.runtime,
                Handler=handler,
                Timeout=platform.timeout,
                MemorySize=platform.memory,
                Publish=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("Lambda CreateFunction", e) from e
        return resp["FunctionArn"]

    def _wait(self, waiter_name: str, timeout: float) -> None:
        waiter = self.client.get_waiter(waiter_name)
        waiter.wait(
            FunctionName=self.function_name,
            WaiterConfig={
                "Delay": WAITER_DELAY_SECONDS,
                "MaxAttempts": max(1, math.ceil(timeout / WAITER_DELAY_SECONDS)),
            },
        )

    def wait_active(self, timeout: float = DEFAULT_WAIT_SECONDS) -> None:
        self.logger.debug("Lambda 함수가 Active 가 될 때까지 대기 (최대 %ss)", timeout)
        try:
            self._wait("function_active_v2", timeout)
        except WaiterError as e:
            raise WaiterTimeoutError(
                f"Lambda 함수가 {timeout}초 안에 Active 상태가 되지 않았습니다: {self.function_name}",
                cause=e,
            ) from e

    def wait_updated(self, timeout: float = DEFAULT_WAIT_SECONDS) -> bool:
        """업데이트 경로에서는 대기 초과를 경고로만 남기고 계속 진행한다."""
        self.logger.debug("Lambda 함수 업데이트 완료 대기 (최대 %ss)", timeout)
        try:
            self._wait("function_updated_v2", timeout)
        except WaiterError as e:
            self.logger.warning("Lambda 업데이트 대기 초과 (계속 진행): %s", e)
            return False
        return True

    def update_code(self, content: bytes) -> str:
        """
        zip 바이트로 코드를 교체하고 새 버전을 publish 한다.
        rollback 도 과거 코드를 새 버전으로 다시 올리는 방식으로 이 경로를 쓴다.
        """
        self.logger.info("Lambda 코드 업데이트: %s (%d bytes)", self.function_name, len(content))
        try:
            resp = self.client.update_function_code(
                FunctionName=self.function_name,
                ZipFile=content,
                Publish=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("Lambda UpdateFunctionCode", e) from e
        return resp["FunctionArn"]

    def invoke(self, command: str) -> dict:
        payload = json.dumps({"manage": command}).encode("utf-8")
        self.logger.debug("Lambda 호출: %s payload=%s", self.function_name, payload)
        try:
            resp = self.client.invoke(
                FunctionName=self.function_name,
                InvocationType="RequestResponse",
                LogType="Tail",
                Payload=payload,
            )
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("Lambda Invoke", e) from e

        if resp.get("LogResult"):
            self.echo(base64.b64decode(resp["LogResult"]).decode("utf-8", errors="replace"))
        else:
            body = resp.get("Payload")
            self.echo(body.read().decode("utf-8", errors="replace") if hasattr(body, "read") else str(resp))

        # HTTP 200 이어도 함수 코드가 실패하면 FunctionError 가 채워진다.
        if resp.get("FunctionError"):
            raise FunctionExecutionError(
                f"{resp['FunctionError']} - 함수 실행 중 오류가 발생했습니다: {self.function_name}"
            )
        return resp

    def delete(self) -> None:
        """best-effort. undeploy 후반부라 실패해도 예외를 올리지 않는다."""
        self.logger.debug("Lambda 함수 삭제: %s", self.function_name)
        try:
            self.client.delete_function(FunctionName=self.function_name)
        except (ClientError, BotoCoreError) as e:
            self.logger.warning("Lambda 함수 삭제 실패 (무시): %s", e)
