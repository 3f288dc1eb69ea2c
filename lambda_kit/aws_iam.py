"""
aws_iam
-------

Lambda 실행 role 과 인라인 권한 정책을 준비하는 모듈.

role/정책은 지연 생성되며, undeploy 시에도 삭제하지 않는다.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .aws_clients import is_not_found, remote_fault
from .logging_utils import get_logger


POLICY_NAME = "lambda-kit-permissions"

TRUST_POLICY = """{
    "Version": "2012-10-17",
    "Statement": [
        {
            "Sid": "",
            "Effect": "Allow",
            "Principal": {
                "Service": [
                    "apigateway.amazonaws.com",
                    "lambda.amazonaws.com",
                    "events.amazonaws.com"
                ]
            },
            "Action": "sts:AssumeRole"
        }
    ]
}"""

PERMISSIONS_POLICY = """{
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Action": [
                "logs:*"
            ],
            "Resource": "arn:aws:logs:*:*:*"
        },
        {
            "Effect": "Allow",
            "Action": [
                "lambda:InvokeFunction"
            ],
            "Resource": [
                "*"
            ]
        },
        {
            "Effect": "Allow",
            "Action": [
                "xray:PutTraceSegments",
                "xray:PutTelemetryRecords"
            ],
            "Resource": [
                "*"
            ]
        },
        {
            "Effect": "Allow",
            "Action": [
                "ec2:AttachNetworkInterface",
                "ec2:CreateNetworkInterface",
                "ec2:DeleteNetworkInterface",
                "ec2:DescribeInstances",
                "ec2:DescribeNetworkInterfaces",
                "ec2:DetachNetworkInterface",
                "ec2:ModifyNetworkInterfaceAttribute",
                "ec2:ResetNetworkInterfaceAttribute"
            ],
            "Resource": "*"
        },
        {
            "Effect": "Allow",
            "Action": [
                "s3:*"
            ],
            "Resource": "arn:aws:s3:::*"
        },
        {
            "Effect": "Allow",
            "Action": [
                "kinesis:*"
            ],
            "Resource": "arn:aws:kinesis:*:*:*"
        },
        {
            "Effect": "Allow",
            "Action": [
                "sns:*"
            ],
            "Resource": "arn:aws:sns:*:*:*"
        },
        {
            "Effect": "Allow",
            "Action": [
                "sqs:*"
            ],
            "Resource": "arn:aws:sqs:*:*:*"
        },
        {
            "Effect": "Allow",
            "Action": [
                "dynamodb:*"
            ],
            "Resource": "arn:aws:dynamodb:*:*:*"
        },
        {
            "Effect": "Allow",
            "Action": [
                "route53:*"
            ],
            "Resource": "*"
        }
    ]
}"""


def role_name_for(function_name: str) -> str:
    return f"{function_name}-LambdaKitExecutionRole"


class AccessManager:
    def __init__(self, client: Any, function_name: str, logger: Optional[logging.Logger] = None) -> None:
        self.client = client
        self.function_name = function_name
        self.role_name = role_name_for(function_name)
        self.policy_name = POLICY_NAME
        self.logger = get_logger(__name__, logger)

    def ensure_permissions(self) -> str:
        """
        실행 role 과 권한 정책이 있는지 확인하고, 없으면 만든다.

        Returns:
            role ARN
        """
        role_arn = self._ensure_role()
        self._ensure_role_policy()
        return role_arn

    def _ensure_role(self) -> str:
        self.logger.debug("IAM role 조회: %s", self.role_name)
        try:
            resp = self.client.get_role(RoleName=self.role_name)
            return resp["Role"]["Arn"]
        except (ClientError, BotoCoreError) as e:
            if not is_not_found(e):
                raise remote_fault("IAM GetRole", e) from e

        self.logger.info("IAM role 이 없어 새로 생성합니다: %s", self.role_name)
        try:
            resp = self.client.create_role(
                RoleName=self.role_name,
                Path="/",
                AssumeRolePolicyDocument=TRUST_POLICY,
            )
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("IAM CreateRole", e) from e
        return resp["Role"]["Arn"]

    def _ensure_role_policy(self) -> None:
        self.logger.debug("IAM role 정책 조회: %s/%s", self.role_name, self.policy_name)
        try:
            self.client.get_role_policy(RoleName=self.role_name, PolicyName=self.policy_name)
            return
        except (ClientError, BotoCoreError) as e:
            if not is_not_found(e):
                raise remote_fault("IAM GetRolePolicy", e) from e

        self.logger.info("IAM role 정책이 없어 새로 연결합니다: %s", self.policy_name)
        try:
            self.client.put_role_policy(
                RoleName=self.role_name,
                PolicyName=self.policy_name,
                PolicyDocument=PERMISSIONS_POLICY,
            )
        except (ClientError, BotoCoreError) as e:
            raise remote_fault("IAM PutRolePolicy", e) from e
