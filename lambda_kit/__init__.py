"""
lambda_kit
----------

AWS Lambda 용 배포 CLI 패키지.
빌드된 코드를 S3 에 올리고, 실행 role 을 준비하고, Lambda 함수를 생성/갱신한 뒤
CloudFormation 으로 만든 API Gateway 를 앞에 붙인다.
로그 tail, 버전 rollback, 전체 삭제(undeploy)까지 한 번에 다루는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "orchestrator",
]
