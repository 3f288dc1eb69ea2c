from __future__ import annotations

import logging
import os
import shutil
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Protocol

import click
import requests

from .aws_apigateway import GatewayProvisioner
from .aws_clients import create_aws_clients, create_session
from .aws_iam import AccessManager
from .aws_lambda import NOT_DEPLOYED_MESSAGE, ComputeProvisioner, VersionRevision
from .aws_logs import LogService
from .aws_metrics import MetricsReporter, MetricsSummary
from .aws_s3 import ArtifactStore
from .config import DEFAULT_CONFIG_FILE, DeploymentConfig, persist_config_async
from .exceptions import (
    LambdaKitError,
    LocalIOError,
    NotDeployedError,
    NotFoundError,
    RemoteFaultError,
    UserInputError,
)
from .logging_utils import get_logger
from .packaging import (
    Artifact,
    Builder,
    SourceBuilder,
    archive_directory,
    artifact_name,
    remove_local_artifact,
)


IMAGE_PACKAGE_TYPE = "Image"
CODE_DOWNLOAD_TIMEOUT = 60.0


# Orchestrator 가 협력 객체에 기대하는 메서드만 적어둔 인터페이스.
# aws_* 모듈의 구현체와 테스트용 fake 모두 이 모양을 따른다.
class Access(Protocol):
    def ensure_permissions(self) -> str: ...


class Storage(Protocol):
    def upload(self, path: str) -> str: ...
    def delete(self, key: str) -> None: ...
    def accessible(self) -> None: ...


class Compute(Protocol):
    def is_deployed(self) -> bool: ...
    def revisions(self) -> List[VersionRevision]: ...
    def create(self, artifact_key: str, handler: str, role_arn: str) -> str: ...
    def wait_active(self) -> None: ...
    def wait_updated(self) -> bool: ...
    def update_code(self, content: bytes) -> str: ...
    def code_location(self, version: str) -> str: ...
    def invoke(self, command: str) -> dict: ...
    def delete(self) -> None: ...


class Gateway(Protocol):
    def setup(self, function_arn: str, role_arn: str) -> str: ...
    def delete(self) -> None: ...
    def delete_logs(self) -> None: ...


class Monitor(Protocol):
    def watch(self, stop_event: Optional[threading.Event] = None) -> None: ...
    def clear(self, group_name: Optional[str] = None) -> None: ...


class Orchestrator:
    """
    함수 하나(functionName)의 배포 수명주기를 조율한다.

    Deploy/Update/Undeploy/Rollback 은 모두 fail-fast 이다. 한 단계가 실패하면
    LambdaKitError 를 그대로 올리고 이후 단계는 실행하지 않는다.
    (예외: Undeploy 의 함수 삭제/로그 그룹 삭제는 best-effort)
    """

    def __init__(
        self,
        cfg: DeploymentConfig,
        *,
        builder: Builder,
        access: Access,
        storage: Storage,
        compute: Compute,
        gateway: Gateway,
        log_service: Monitor,
        metrics_reporter: Optional[MetricsReporter] = None,
        config_path: Optional[str] = DEFAULT_CONFIG_FILE,
        http_get: Callable[..., Any] = requests.get,
        echo: Callable[[str], None] = click.echo,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cfg = cfg
        self.builder = builder
        self.access = access
        self.storage = storage
        self.compute = compute
        self.gateway = gateway
        self.log_service = log_service
        self.metrics_reporter = metrics_reporter
        self.config_path = config_path
        self.http_get = http_get
        self.echo = echo
        self.logger = get_logger(__name__, logger)
        self._role_arn: Optional[str] = None
        self._persist_thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(
        cls,
        cfg: DeploymentConfig,
        *,
        config_path: Optional[str] = DEFAULT_CONFIG_FILE,
        profile: Optional[str] = None,
        builder: Optional[Builder] = None,
    ) -> "Orchestrator":
        """boto3 기반 기본 컴포넌트를 조립한다."""
        session = create_session(region=cfg.region, profile=profile)
        clients = create_aws_clients(session)
        fn = cfg.function_name

        storage = ArtifactStore(clients["s3"], cfg.bucket, cfg.region)
        log_service = LogService(clients["logs"], fn)
        return cls(
            cfg,
            builder=builder or SourceBuilder(),
            access=AccessManager(clients["iam"], fn),
            storage=storage,
            compute=ComputeProvisioner(clients["lambda"], cfg),
            gateway=GatewayProvisioner(
                clients["cloudformation"],
                clients["apigateway"],
                cfg,
                storage,
                log_service,
                echo=click.echo,
            ),
            log_service=log_service,
            metrics_reporter=MetricsReporter(clients["cloudwatch"], fn),
            config_path=config_path,
        )

    # -----------------------------
    # helpers
    # -----------------------------
    def _package(self) -> Artifact:
        result = self.builder.build(self.cfg)
        if not self.cfg.platform.handler:
            self.cfg.platform.handler = result.handler
        try:
            return archive_directory(result.package_dir, archive_name=artifact_name(self.cfg.function_name))
        finally:
            build_root = os.path.dirname(result.package_dir)
            if os.path.basename(build_root).startswith("lambda-kit-build-"):
                shutil.rmtree(build_root, ignore_errors=True)

    def _ensure_role(self) -> str:
        if self._role_arn is None:
            self._role_arn = self.access.ensure_permissions()
            if self.cfg.platform.role != self._role_arn:
                self.cfg.platform.role = self._role_arn
                if self.config_path:
                    # 디스크 기록은 기다리지 않는다. 실패해도 배포는 계속.
                    self._persist_thread = persist_config_async(self.cfg, self.config_path)
        return self._role_arn

    def _cleanup(self, artifact: Artifact, owned: bool = True) -> None:
        # 사용자가 넘긴 zip 은 로컬에 그대로 둔다.
        if owned:
            remove_local_artifact(artifact)
        self.storage.delete(artifact.key)

    def _discard_local(self, artifact: Artifact) -> None:
        try:
            remove_local_artifact(artifact)
        except LocalIOError as e:
            self.logger.warning("로컬 패키지 정리 실패 (무시): %s", e)

    @contextmanager
    def _discard_on_failure(self, artifact: Artifact, owned: bool = True) -> Iterator[None]:
        # 실패한 배포의 zip 은 로컬에 남기지 않는다. 원래 예외는 그대로 올린다.
        try:
            yield
        except Exception:
            if owned:
                self._discard_local(artifact)
            raise

    # -----------------------------
    # public operations
    # -----------------------------
    def deploy(self) -> str:
        """
        최초 배포. 이미 배포되어 있으면 update 로 넘긴다. (에러 아님)

        Returns:
            API Gateway 호출 URL
        """
        self.logger.info("프로젝트 배포 시작: %s", self.cfg.function_name)
        artifact = self._package()
        with self._discard_on_failure(artifact):
            role_arn = self._ensure_role()
            deployed = self.compute.is_deployed()

        if deployed:
            self.logger.info("이미 배포된 프로젝트입니다. 업데이트로 진행합니다.")
            return self._update(artifact, owned=True)

        with self._discard_on_failure(artifact):
            key = self.storage.upload(artifact.path)
            function_arn = self.compute.create(key, self.cfg.handler, role_arn)
            self.compute.wait_active()
            url = self.gateway.setup(function_arn, role_arn)
        self._cleanup(artifact)
        self.logger.info("배포 완료: %s", self.cfg.function_name)
        return url

    def package(self, output_path: Optional[str] = None) -> Artifact:
        """
        배포 없이 업로드용 zip 만 만든다.
        output_path 가 있으면 그 위치로 옮기고, 없으면 임시 디렉토리에 남긴다.
        """
        artifact = self._package()
        if output_path is None:
            return artifact

        target = os.path.abspath(output_path)
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            shutil.move(artifact.path, target)
        except OSError as e:
            self._discard_local(artifact)
            raise LocalIOError(f"패키지 파일을 옮길 수 없습니다: {target}", cause=e) from e
        # 남은 임시 디렉토리 정리
        self._discard_local(artifact)
        return Artifact(path=target, size=os.path.getsize(target))

    def update(self, artifact_path: Optional[str] = None) -> str:
        """
        artifact_path 가 없으면 새로 빌드한다. 있으면 그 zip 을 그대로 올린다.
        """
        if artifact_path is None:
            return self._update(self._package(), owned=True)
        if not os.path.isfile(artifact_path):
            raise LocalIOError(f"패키지 파일이 없습니다: {artifact_path}")
        artifact = Artifact(path=artifact_path, size=os.path.getsize(artifact_path))
        return self._update(artifact, owned=False)

    def _update(self, artifact: Artifact, owned: bool) -> str:
        with self._discard_on_failure(artifact, owned):
            role_arn = self._ensure_role()

            self.storage.upload(artifact.path)
            try:
                with open(artifact.path, "rb") as f:
                    content = f.read()
            except OSError as e:
                raise LocalIOError(f"패키지 파일을 읽을 수 없습니다: {artifact.path}", cause=e) from e

            function_arn = self.compute.update_code(content)
            self.compute.wait_updated()
            url = self.gateway.setup(function_arn, role_arn)
        self._cleanup(artifact, owned)
        self.logger.info("업데이트 완료: %s", self.cfg.function_name)
        return url

    def undeploy(self) -> None:
        """
        gateway -> gateway 로그 -> 함수 -> 함수 로그 그룹 순서로 지운다.
        gateway 통합이 함수를 가리키므로 함수보다 먼저 지워야 한다.
        IAM role/정책은 남겨둔다.
        """
        if not self.compute.is_deployed():
            raise NotDeployedError(NOT_DEPLOYED_MESSAGE)

        self.logger.info("배포 제거 시작: %s", self.cfg.function_name)
        self.gateway.delete()
        self.gateway.delete_logs()
        self.compute.delete()
        try:
            self.log_service.clear(self.cfg.log_group_name)
        except LambdaKitError as e:
            self.logger.warning("함수 로그 그룹 삭제 실패 (무시): %s", e)
        self.logger.info("배포 제거 완료: %s", self.cfg.function_name)

    @staticmethod
    def select_revision(versions: List[VersionRevision], steps: int) -> str:
        """
        $LATEST 를 뺀 숫자 버전을 내림차순 정렬하고 steps 번째를 고른다.
        예: [5,4,3,2,1], steps=1 -> "4"
        """
        if steps < 1:
            raise UserInputError(f"rollback 단계 수는 1 이상이어야 합니다: {steps}")
        if versions and versions[-1].package_type == IMAGE_PACKAGE_TYPE:
            raise UserInputError("Docker(이미지) 배포는 rollback 을 지원하지 않습니다. 중단합니다.")

        revisions = sorted((int(v.version) for v in versions if not v.is_latest), reverse=True)
        if steps >= len(revisions):
            raise UserInputError(
                f"rollback 할 수 있는 버전이 부족합니다 (요청 {steps}단계, 이전 버전 {len(revisions)}개). 중단합니다."
            )
        return str(revisions[steps])

    def rollback(self, steps: int = 1) -> str:
        """
        과거 버전의 코드를 내려받아 새 버전으로 다시 publish 한다.
        버전 번호는 계속 증가하고 내용만 되돌아간다.
        """
        version = self.select_revision(self.compute.revisions(), steps)
        self.logger.info("버전 %s 으로 rollback 합니다: %s", version, self.cfg.function_name)
        location = self.compute.code_location(version)

        try:
            resp = self.http_get(location, timeout=CODE_DOWNLOAD_TIMEOUT)
        except requests.RequestException as e:
            raise RemoteFaultError(f"버전 {version} 코드 다운로드 실패: {e}", cause=e) from e
        if resp.status_code != 200:
            raise RemoteFaultError(
                f"버전 {version} 코드를 가져올 수 없습니다 (status={resp.status_code}): {self.cfg.function_name}"
            )

        arn = self.compute.update_code(resp.content)
        self.compute.wait_updated()
        return arn

    def logs(self, stop_event: Optional[threading.Event] = None) -> None:
        self.log_service.watch(stop_event)

    def invoke(self, command: str) -> dict:
        return self.compute.invoke(command)

    def metrics(self) -> MetricsSummary:
        if self.metrics_reporter is None:
            raise LambdaKitError("metrics reporter 가 설정되지 않았습니다.")
        return self.metrics_reporter.summary()

    def check(self) -> tuple[str, bool]:
        """
        실제 리소스 변경 없이 버킷 접근성과 배포 상태를 점검한다.

        Returns:
            summary: 사람이 읽기 좋은 텍스트 요약
            has_issues: 치명적인 이슈가 있는지 여부
        """
        lines: List[str] = []
        critical: List[str] = []

        lines.append("# Deploy pre-check")
        lines.append(f"- function: {self.cfg.function_name}")
        lines.append(f"- region: {self.cfg.region}")
        lines.append("")

        lines.append("## S3")
        try:
            self.storage.accessible()
            lines.append(f"- 버킷 존재함 ({self.cfg.bucket})")
        except NotFoundError:
            # 배포 시 생성 가능한 리소스
            lines.append(f"- 버킷 없음 (배포 시 생성됨) ({self.cfg.bucket})")
        except LambdaKitError as e:
            msg = f"S3: 버킷 확인 불가: {e}"
            lines.append(f"- {msg}")
            critical.append(msg)
        lines.append("")

        lines.append("## Lambda")
        try:
            deployed = self.compute.is_deployed()
            lines.append(f"- 배포 상태: {'배포됨' if deployed else '미배포'}")
        except LambdaKitError as e:
            msg = f"Lambda: 상태 확인 불가: {e}"
            lines.append(f"- {msg}")
            critical.append(msg)
        lines.append("")

        lines.append("## Summary")
        if critical:
            lines.append("- 상태: 크리티컬 이슈가 있습니다. 배포 전 반드시 해결해야 합니다.")
            for i in critical:
                lines.append(f"  - {i}")
        else:
            lines.append("- 상태: 주요 이슈 없음 (배포 가능 상태로 보입니다)")

        return "\n".join(lines), bool(critical)
