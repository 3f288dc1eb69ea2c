"""
aws_apigateway
--------------

Lambda 앞단의 REST API Gateway 를 CloudFormation 스택으로 구성/삭제하는 모듈.

흐름:
    템플릿 생성 -> S3 업로드 -> 스택 create/update -> 종료 상태까지 폴링
    -> API id 확인 -> deployment + stage 설정 -> 호출 URL 반환
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .aws_clients import error_message, remote_fault
from .aws_logs import LogService
from .aws_s3 import GOV_CLOUD_REGION, ArtifactStore
from .config import DeploymentConfig
from .exceptions import (
    LambdaKitError,
    LocalIOError,
    NotFoundError,
    RemoteFaultError,
    StackFailedError,
    WaiterTimeoutError,
)
from .logging_utils import get_logger


DESCRIPTION = "Automatically created by lambda-kit"
OWNER_TAG = "LambdaKitProject"
API_LOGICAL_ID = "Api"
PROXY_LOGICAL_ID = "ResourceAnyPathSlashed"
REST_API_LIST_LIMIT = 500

DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_STACK_TIMEOUT = 600.0

SUCCESS_STATUSES = frozenset({"CREATE_COMPLETE", "UPDATE_COMPLETE"})

STAGE_PATCH_OPERATIONS = [
    {"op": "replace", "path": "/*/*/logging/loglevel", "value": "OFF"},
    {"op": "replace", "path": "/*/*/logging/dataTrace", "value": "false"},
    {"op": "replace", "path": "/*/*/metrics/enabled", "value": "false"},
    {"op": "replace", "path": "/*/*/caching/ttlInSeconds", "value": "300"},
    {"op": "replace", "path": "/*/*/caching/dataEncrypted", "value": "false"},
]


def is_failed_status(status: str) -> bool:
    return status.startswith("DELETE_") or "ROLLBACK" in status


def is_success_status(status: str) -> bool:
    return status in SUCCESS_STATUSES


def arn_partition(region: str) -> str:
    if region == GOV_CLOUD_REGION:
        return "aws-us-gov"
    return "aws"


def integration_uri(region: str, function_arn: str) -> str:
    return (
        f"arn:{arn_partition(region)}:apigateway:{region}:lambda:path/2015-03-31/"
        f"functions/{function_arn}/invocations"
    )


class GatewayProvisioner:
    def __init__(
        self,
        cfn_client: Any,
        apigw_client: Any,
        cfg: DeploymentConfig,
        store: ArtifactStore,
        log_service: LogService,
        *,
        echo: Optional[Callable[[str], None]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stack_timeout: float = DEFAULT_STACK_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cfn = cfn_client
        self.apigw = apigw_client
        self.cfg = cfg
        self.store = store
        self.log_service = log_service
        self.echo = echo
        self.poll_interval = poll_interval
        self.stack_timeout = stack_timeout
        self.logger = get_logger(__name__, logger)

    @property
    def stack_name(self) -> str:
        return self.cfg.function_name

    # -----------------------------
    # template
    # -----------------------------
    def _method(self, resource_id: Any, function_arn: str, role_arn: str) -> Dict[str, Any]:
        return {
            "Type": "AWS::ApiGateway::Method",
            "Properties": {
                "RestApiId": {"Ref": API_LOGICAL_ID},
                "ResourceId": resource_id,
                "HttpMethod": "ANY",
                "AuthorizationType": "NONE",
                "ApiKeyRequired": False,
                "Integration": {
                    "CacheNamespace": "none",
                    "Credentials": role_arn,
                    "IntegrationHttpMethod": "POST",
                    "Type": "AWS_PROXY",
                    "PassthroughBehavior": "NEVER",
                    "Uri": integration_uri(self.cfg.region, function_arn),
                },
            },
        }

    def build_template(self, function_arn: str, role_arn: str) -> Dict[str, Any]:
        """
        루트 리소스와 catch-all `{proxy+}` 리소스에 각각 ANY 메서드(AWS_PROXY)를 붙인 템플릿.
        """
        root_id = {"Fn::GetAtt": [API_LOGICAL_ID, "RootResourceId"]}
        return {
            "AWSTemplateFormatVersion": "2010-09-09",
            "Description": "Auto generated by lambda-kit",
            "Resources": {
                API_LOGICAL_ID: {
                    "Type": "AWS::ApiGateway::RestApi",
                    "Properties": {
                        "Name": self.stack_name,
                        "Description": DESCRIPTION,
                    },
                },
                "ANY0": self._method(root_id, function_arn, role_arn),
                PROXY_LOGICAL_ID: {
                    "Type": "AWS::ApiGateway::Resource",
                    "Properties": {
                        "RestApiId": {"Ref": API_LOGICAL_ID},
                        "ParentId": root_id,
                        "PathPart": "{proxy+}",
                    },
                },
                "ANY1": self._method({"Ref": PROXY_LOGICAL_ID}, function_arn, role_arn),
            },
        }

    def _write_template(self, template: Dict[str, Any]) -> str:
        tmp_dir = tempfile.mkdtemp(prefix="lambda-kit-template-")
        path = os.path.join(tmp_dir, f"{self.stack_name}-template-{int(time.time())}.json")
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(template, f, indent=2)
        except OSError as e:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise LocalIOError(f"템플릿 파일을 쓸 수 없습니다: {path}", cause=e) from e
        return path

    # -----------------------------
    # stack
    # -----------------------------
    def _describe_stack(self) -> Optional[dict]:
        try:
            resp = self.cfn.describe_stacks(StackName=self.stack_name)
        except ClientError as e:
            # 스택이 없으면 CloudFormation 은 ValidationError 로 응답한다.
            if "does not exist" in error_message(e):
                return None
            raise remote_fault("CloudFormation DescribeStacks", e) from e
        except BotoCoreError as e:
            raise remote_fault("CloudFormation DescribeStacks", e) from e
        stacks = resp.get("Stacks") or []
        return stacks[0] if stacks else None

    def create_or_update_stack(self, template_url: str) -> None:
        if self._describe_stack() is None:
            self.logger.info("CloudFormation 스택 생성: %s", self.stack_name)
            try:
                self.cfn.create_stack(
                    StackName=self.stack_name,
                    TemplateURL=template_url,
                    Tags=[{"Key": OWNER_TAG, "Value": self.stack_name}],
                    Capabilities=[],
                )
            except (ClientError, BotoCoreError) as e:
                raise remote_fault("CloudFormation CreateStack", e) from e
            return

        self.logger.info("CloudFormation 스택 업데이트: %s", self.stack_name)
        try:
            self.cfn.update_stack(
                StackName=self.stack_name,
                TemplateURL=template_url,
                Capabilities=[],
            )
        except ClientError as e:
            if "No updates are to be performed" in error_message(e):
                self.logger.info("스택 변경 사항이 없습니다: %s", self.stack_name)
                return
            raise remote_fault("CloudFormation UpdateStack", e) from e
        except BotoCoreError as e:
            raise remote_fault("CloudFormation UpdateStack", e) from e

    def wait_for_stack(
        self,
        timeout: Optional[float] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> str:
        """
        스택이 종료 상태가 될 때까지 poll_interval 간격으로 폴링한다.

        - CREATE_COMPLETE / UPDATE_COMPLETE: 성공, 상태 문자열 반환
        - DELETE_* / *ROLLBACK*: StackFailedError
        - timeout 초과 또는 stop_event set: WaiterTimeoutError
        """
        timeout = self.stack_timeout if timeout is None else timeout
        stop = stop_event or threading.Event()
        deadline = time.monotonic() + timeout

        while True:
            if stop.wait(self.poll_interval):
                raise WaiterTimeoutError(f"스택 대기가 취소되었습니다: {self.stack_name}")

            try:
                stack = self._describe_stack()
            except RemoteFaultError as e:
                # 일시적인 조회 실패는 다음 폴링에서 다시 본다.
                self.logger.debug("스택 상태 조회 실패, 재시도: %s", e)
                stack = None

            if stack is not None:
                status = stack["StackStatus"]
                self.logger.debug("스택 상태: %s", status)
                if is_failed_status(status):
                    raise StackFailedError(
                        f"CloudFormation 스택 생성 실패 ({status}). 콘솔을 확인하세요: {self.stack_name}",
                        status=status,
                    )
                if is_success_status(status):
                    return status

            if time.monotonic() >= deadline:
                raise WaiterTimeoutError(
                    f"CloudFormation 스택이 {timeout}초 안에 완료되지 않았습니다: {self.stack_name}"
                )

    # -----------------------------
    # API
    # -----------------------------
    def _rest_api_ids(self) -> List[str]:
        try:
            resp = self.apigw.get_rest_apis(limit=REST_API_LIST_LIMIT)
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("APIGateway GetRestApis", e) from e
        return [item["id"] for item in resp.get("items", []) if item.get("name") == self.stack_name]

    def resolve_api_id(self) -> str:
        try:
            resp = self.cfn.describe_stack_resource(
                StackName=self.stack_name,
                LogicalResourceId=API_LOGICAL_ID,
            )
            return resp["StackResourceDetail"]["PhysicalResourceId"]
        except (ClientError, BotoCoreError) as e:
            self.logger.debug("스택 리소스에서 API id 를 찾지 못해 이름으로 검색합니다: %s", e)

        api_ids = self._rest_api_ids()
        if not api_ids:
            raise NotFoundError(f"API Gateway 를 찾을 수 없습니다: {self.stack_name}", resource=self.stack_name)
        return api_ids[0]

    def deploy_stage(self, api_id: str) -> str:
        stage = self.cfg.stage
        self.logger.debug("API Gateway 배포: api=%s stage=%s", api_id, stage)
        try:
            self.apigw.create_deployment(
                restApiId=api_id,
                stageName=stage,
                description=DESCRIPTION,
                cacheClusterSize="0.5",
            )
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("[Deployment Error] APIGateway CreateDeployment", e) from e

        try:
            self.apigw.update_stage(
                restApiId=api_id,
                stageName=stage,
                patchOperations=STAGE_PATCH_OPERATIONS,
            )
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("[Stage Update Error] APIGateway UpdateStage", e) from e

        return f"https://{api_id}.execute-api.{self.cfg.region}.amazonaws.com/{stage}"

    def setup(self, function_arn: str, role_arn: str, stop_event: Optional[threading.Event] = None) -> str:
        """
        템플릿을 올리고 스택을 맞춘 뒤 stage 까지 배포하고 호출 URL 을 반환한다.
        """
        template = self.build_template(function_arn, role_arn)
        path = self._write_template(template)
        key = self.store.upload(path)
        try:
            self.create_or_update_stack(self.store.object_url(key))
            self.wait_for_stack(stop_event=stop_event)
        finally:
            shutil.rmtree(os.path.dirname(path), ignore_errors=True)
            # 스택이 실패해도 템플릿 객체는 지운다. 정리 실패가 원래 예외를 가리면 안 된다.
            try:
                self.store.delete(key)
            except LambdaKitError as e:
                self.logger.warning("템플릿 객체 삭제 실패 (무시): %s: %s", key, e)

        api_id = self.resolve_api_id()
        url = self.deploy_stage(api_id)
        self.logger.info("API Gateway URL: %s", url)
        if self.echo is not None:
            self.echo(f"url: {url}")
        return url

    # -----------------------------
    # teardown
    # -----------------------------
    def _delete_stack(self) -> bool:
        """소유 태그가 일치할 때만 스택을 지운다. 지웠으면 True."""
        try:
            stack = self._describe_stack()
        except RemoteFaultError as e:
            self.logger.debug("스택 조회 실패: %s", e)
            return False
        if stack is None:
            self.logger.debug("스택을 찾을 수 없습니다: %s", self.stack_name)
            return False

        tags = {t["Key"]: t["Value"] for t in stack.get("Tags", [])}
        if tags.get(OWNER_TAG) != self.stack_name:
            self.logger.warning("%s 태그가 일치하지 않아 스택을 삭제하지 않습니다: %s", OWNER_TAG, self.stack_name)
            return False

        self.logger.info("CloudFormation 스택 삭제: %s", self.stack_name)
        try:
            self.cfn.delete_stack(StackName=self.stack_name)
        except (ClientError, BotoCoreError) as e:
            self.logger.debug("스택 삭제 실패: %s", e)
            return False
        return True

    def delete(self) -> None:
        if self._delete_stack():
            return

        # 스택 경로가 안 되면 같은 이름의 REST API 를 직접 지운다.
        for api_id in self._rest_api_ids():
            self.logger.info("API Gateway 삭제: %s", api_id)
            try:
                self.apigw.delete_rest_api(restApiId=api_id)
            except (ClientError, BotoCoreError) as e:
                raise remote_fault("APIGateway DeleteRestApi", e) from e

    def delete_logs(self) -> None:
        self.logger.debug("API Gateway 로그 삭제")
        for api_id in self._rest_api_ids():
            try:
                resp = self.apigw.get_stages(restApiId=api_id)
            except (ClientError, BotoCoreError) as e:
                raise remote_fault("APIGateway GetStages", e) from e
            for item in resp.get("item", []):
                group = f"API-Gateway-Execution-Logs_{api_id}/{item['stageName']}"
                try:
                    self.log_service.clear(group)
                except LambdaKitError as e:
                    self.logger.warning("API Gateway 로그 그룹 삭제 실패 (무시): %s: %s", group, e)
