"""
exceptions
----------

lambda_kit 전반에서 사용하는 예외 계층.

컴포넌트 경계에서 botocore ClientError 를 아래 예외로 변환하고,
CLI 는 LambdaKitError 만 잡아서 "[ERROR] ..." 로 출력한 뒤 exit 1 한다.
"""

from __future__ import annotations

from typing import Optional


class LambdaKitError(Exception):
    """모든 lambda_kit 예외의 베이스."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigError(LambdaKitError):
    """설정 파일 누락/형식 오류."""


class NotFoundError(LambdaKitError):
    """원격 리소스(role/policy/bucket/function/stack/log group)가 없음."""

    def __init__(self, message: str, resource: Optional[str] = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause)
        self.resource = resource


class RemoteFaultError(LambdaKitError):
    """NotFound 이외의 AWS API 오류. 남은 파이프라인을 즉시 중단한다."""

    def __init__(self, message: str, operation: Optional[str] = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause)
        self.operation = operation


class WaiterTimeoutError(LambdaKitError):
    """waiter/폴링이 제한 시간 안에 끝나지 않음."""


class StackFailedError(LambdaKitError):
    """CloudFormation 스택이 DELETE_* / *ROLLBACK* 상태로 끝남."""

    def __init__(self, message: str, status: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status


class FunctionExecutionError(LambdaKitError):
    """invoke 는 성공했지만 함수 코드가 에러를 반환함."""


class UserInputError(LambdaKitError):
    """잘못된 rollback 단계 수, 컨테이너 이미지 롤백 시도 등."""


class NotDeployedError(UserInputError):
    """배포된 프로젝트가 없는데 undeploy/rollback 을 요청함."""


class LocalIOError(LambdaKitError):
    """임시 디렉토리/아카이브/빌드 명령 실패."""
