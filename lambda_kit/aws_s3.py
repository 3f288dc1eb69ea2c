"""
aws_s3
------

배포 패키지(zip)와 CloudFormation 템플릿을 올려두는 S3 버킷 관리 모듈.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .aws_clients import is_not_found, remote_fault
from .exceptions import LocalIOError, NotFoundError, RemoteFaultError
from .logging_utils import get_logger


GOV_CLOUD_REGION = "us-gov-west-1"


class ArtifactStore:
    def __init__(self, client: Any, bucket: str, region: str, logger: Optional[logging.Logger] = None) -> None:
        self.client = client
        self.bucket = bucket
        self.region = region
        self.logger = get_logger(__name__, logger)

    def accessible(self) -> None:
        """
        버킷 head 요청. 버킷이 없으면 NotFoundError, 그 외 오류는 RemoteFaultError.
        """
        self.logger.debug("S3 버킷 확인: %s", self.bucket)
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            if is_not_found(e):
                raise NotFoundError(
                    f"S3 버킷이 없습니다: {self.bucket}", resource=self.bucket, cause=e
                ) from e
            raise remote_fault("S3 HeadBucket", e) from e

    def create_bucket(self, with_location: bool) -> None:
        self.logger.debug("S3 버킷 생성 (location constraint=%s): %s", with_location, self.bucket)
        kwargs: dict = {"Bucket": self.bucket}
        if with_location:
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.client.create_bucket(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("S3 CreateBucket", e) from e

    def ensure_bucket(self) -> None:
        try:
            self.accessible()
            return
        except NotFoundError:
            self.logger.info("S3 버킷이 없어 새로 생성합니다: %s", self.bucket)

        # us-east-1 등 일부 리전은 LocationConstraint 를 명시하면 거절한다.
        try:
            self.create_bucket(with_location=True)
        except RemoteFaultError as e:
            self.logger.debug("LocationConstraint 포함 생성 실패, 제외하고 재시도: %s", e)
            self.create_bucket(with_location=False)

    def upload(self, path: str) -> str:
        """
        파일을 버킷에 base name 키로 업로드하고 그 키를 반환한다.
        """
        self.ensure_bucket()

        try:
            size = os.path.getsize(path)
        except OSError as e:
            raise LocalIOError(f"패키지 파일을 읽을 수 없습니다: {path}", cause=e) from e
        if size == 0:
            raise LocalIOError(f"패키지 파일이 비어 있습니다: {path}")

        key = os.path.basename(path)
        self.logger.info("S3 업로드: %s -> s3://%s/%s (%d bytes)", path, self.bucket, key, size)
        try:
            with open(path, "rb") as f:
                self.client.put_object(Bucket=self.bucket, Key=key, Body=f)
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("S3 PutObject (패키지 업로드 중단)", e) from e
        return key

    def delete(self, key: str) -> None:
        self.logger.debug("S3 객체 삭제: s3://%s/%s", self.bucket, key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("S3 DeleteObject", e) from e

    def object_url(self, key: str) -> str:
        if self.region == GOV_CLOUD_REGION:
            return f"https://s3-{GOV_CLOUD_REGION}.amazonaws.com/{self.bucket}/{key}"
        return f"https://s3.amazonaws.com/{self.bucket}/{key}"
