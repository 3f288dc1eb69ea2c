"""
aws_clients
-----------

boto3 세션/클라이언트 생성과 botocore ClientError 분류를 담당하는 모듈.

각 컴포넌트는 생성자에서 client 를 주입받을 수 있고,
주입되지 않으면 여기의 팩토리로 만든다. (테스트에서 fake client 로 교체하기 쉽도록)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .exceptions import ConfigError, RemoteFaultError


AWS_CREDENTIALS_DOCS_URL = (
    "https://boto3.amazonaws.com/v1/documentation/api/latest/guide/credentials.html"
)

# 서비스마다 "없음"을 뜻하는 에러 코드가 제각각이다.
NOT_FOUND_CODES = frozenset(
    {
        "NoSuchEntity",
        "NoSuchBucket",
        "NotFound",
        "404",
        "ResourceNotFoundException",
        "NotFoundException",
    }
)


def create_session(region: Optional[str] = None, profile: Optional[str] = None) -> boto3.session.Session:
    try:
        return boto3.session.Session(region_name=region, profile_name=profile)
    except BotoCoreError as e:
        raise ConfigError(
            f"AWS 프로파일을 찾을 수 없습니다. 먼저 AWS 자격 증명을 설정하세요: {AWS_CREDENTIALS_DOCS_URL}",
            cause=e,
        ) from e


def create_aws_clients(session: boto3.session.Session) -> Dict[str, Any]:
    """
    배포에 필요한 boto3 client 를 한 번에 만든다.

    Client Keys:
        iam, s3, lambda, apigateway, cloudformation, logs, cloudwatch
    """
    return {
        "iam": session.client("iam"),
        "s3": session.client("s3"),
        "lambda": session.client("lambda"),
        "apigateway": session.client("apigateway"),
        "cloudformation": session.client("cloudformation"),
        "logs": session.client("logs"),
        "cloudwatch": session.client("cloudwatch"),
    }


def detect_region(default: str) -> str:
    """boto3 기본 설정(AWS_REGION, ~/.aws/config)에서 리전을 찾고, 없으면 default."""
    try:
        region = boto3.session.Session().region_name
    except BotoCoreError:
        region = None
    return region or default


def error_code(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code", ""))
    return ""


def error_message(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Message", ""))
    return str(exc)


def is_not_found(exc: BaseException) -> bool:
    return error_code(exc) in NOT_FOUND_CODES


def remote_fault(operation: str, exc: BaseException) -> RemoteFaultError:
    """ClientError/BotoCoreError 를 RemoteFaultError 로 감싼다. (raise ... from exc 와 함께 사용)"""
    if isinstance(exc, NoCredentialsError):
        detail = f"AWS 자격 증명이 없습니다. 참고: {AWS_CREDENTIALS_DOCS_URL}"
    else:
        detail = error_message(exc) or exc.__class__.__name__
    return RemoteFaultError(f"{operation} 실패: {detail}", operation=operation, cause=exc)
