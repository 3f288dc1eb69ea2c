"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 lambda_kit 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.
"""

from __future__ import annotations

import os
import sys

import pytest


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """moto 용 가짜 자격 증명. 실제 계정으로 요청이 나가지 않도록 한다."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def client_error():
    """botocore ClientError 생성 헬퍼."""
    from botocore.exceptions import ClientError

    def _make(code: str, message: str = "", operation: str = "Operation") -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": message}}, operation)

    return _make


@pytest.fixture
def cfg():
    from lambda_kit.config import DeploymentConfig, PlatformConfig

    return DeploymentConfig(
        name="shop",
        stage="dev",
        bucket="lambda-kit-test-bucket",
        region="us-east-1",
        platform=PlatformConfig(runtime="python3.11", timeout=30, memory=512),
        dir=".",
        entry="app",
    )
