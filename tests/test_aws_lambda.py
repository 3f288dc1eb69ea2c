import base64
import io

import pytest
from botocore.exceptions import WaiterError

from lambda_kit.aws_lambda import ComputeProvisioner, VersionRevision
from lambda_kit.exceptions import (
    FunctionExecutionError,
    NotDeployedError,
    RemoteFaultError,
    WaiterTimeoutError,
)


class FakeWaiter:
    def __init__(self, error=None) -> None:
        self.error = error
        self.kwargs = None

    def wait(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error


class FakeLambda:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.version_pages: list[dict] = [{"Versions": [{"Version": "$LATEST"}, {"Version": "1"}]}]
        self.list_error = None
        self.get_error = None
        self.waiter = FakeWaiter()
        self.invoke_response: dict = {}
        self.delete_error = None
        self.create_kwargs = None

    def list_versions_by_function(self, **kwargs):
        self.calls.append(f"list:{kwargs.get('Marker', '')}")
        if self.list_error is not None:
            raise self.list_error
        return self.version_pages[len(self.calls) - 1]

    def get_function(self, **kwargs):
        self.calls.append("get_function")
        if self.get_error is not None:
            raise self.get_error
        return {
            "Configuration": {"FunctionArn": "arn:aws:lambda:us-east-1:123456789012:function:shop-dev"},
            "Code": {"Location": "https://example.com/code.zip"},
        }

    def create_function(self, **kwargs):
        self.calls.append("create_function")
        self.create_kwargs = kwargs
        return {"FunctionArn": "arn:new"}

    def get_waiter(self, name):
        self.calls.append(f"waiter:{name}")
        return self.waiter

    def update_function_code(self, **kwargs):
        self.calls.append("update_function_code")
        return {"FunctionArn": "arn:updated"}

    def invoke(self, **kwargs):
        self.calls.append("invoke")
        return self.invoke_response

    def delete_function(self, **kwargs):
        self.calls.append("delete_function")
        if self.delete_error is not None:
            raise self.delete_error


def test_list_versions_follows_markers(cfg) -> None:
    client = FakeLambda()
    client.version_pages = [
        {"Versions": [{"Version": "$LATEST"}, {"Version": "1"}], "NextMarker": "m1"},
        {"Versions": [{"Version": "2", "PackageType": "Zip", "CodeSha256": "abc"}]},
    ]

    versions = ComputeProvisioner(client, cfg).list_versions()

    assert [v.version for v in versions] == ["$LATEST", "1", "2"]
    assert versions[0].is_latest
    assert versions[2] == VersionRevision("2", "Zip", "abc")
    assert client.calls == ["list:", "list:m1"]


def test_is_deployed(cfg, client_error) -> None:
    client = FakeLambda()
    assert ComputeProvisioner(client, cfg).is_deployed() is True

    client = FakeLambda()
    client.list_error = client_error("ResourceNotFoundException", "Function not found")
    assert ComputeProvisioner(client, cfg).is_deployed() is False

    client = FakeLambda()
    client.list_error = client_error("AccessDeniedException", "denied")
    with pytest.raises(RemoteFaultError):
        ComputeProvisioner(client, cfg).is_deployed()


def test_revisions_raises_not_deployed(cfg, client_error) -> None:
    client = FakeLambda()
    client.list_error = client_error("ResourceNotFoundException", "Function not found")

    with pytest.raises(NotDeployedError):
        ComputeProvisioner(client, cfg).revisions()


def test_create_returns_existing_function(cfg) -> None:
    client = FakeLambda()

    arn = ComputeProvisioner(client, cfg).create("lambda_kit.zip", "app.handler", "arn:role")

    assert arn == "arn:aws:lambda:us-east-1:123456789012:function:shop-dev"
    assert "create_function" not in client.calls


def test_create_uses_artifact_pointer(cfg, client_error) -> None:
    client = FakeLambda()
    client.get_error = client_error("ResourceNotFoundException", "Function not found")

    arn = ComputeProvisioner(client, cfg).create("lambda_kit.zip", "app.handler", "arn:role")

    assert arn == "arn:new"
    kwargs = client.create_kwargs
    assert kwargs["FunctionName"] == "shop-dev"
    assert kwargs["Code"] == {"S3Bucket": "lambda-kit-test-bucket", "S3Key": "lambda_kit.zip"}
    assert kwargs["Role"] == "arn:role"
    assert kwargs["Runtime"] == "python3.11"
    assert kwargs["Timeout"] == 30
    assert kwargs["MemorySize"] == 512
    assert kwargs["Publish"] is True


def test_wait_active_config_and_timeout(cfg) -> None:
    client = FakeLambda()
    ComputeProvisioner(client, cfg).wait_active(timeout=5)

    assert client.waiter.kwargs == {
        "FunctionName": "shop-dev",
        "WaiterConfig": {"Delay": 1, "MaxAttempts": 5},
    }

    client.waiter = FakeWaiter(WaiterError(name="FunctionActiveV2", reason="Max attempts exceeded", last_response={}))
    with pytest.raises(WaiterTimeoutError):
        ComputeProvisioner(client, cfg).wait_active(timeout=2)


def test_wait_updated_only_warns(cfg, caplog) -> None:
    client = FakeLambda()
    client.waiter = FakeWaiter(WaiterError(name="FunctionUpdatedV2", reason="Max attempts exceeded", last_response={}))

    assert ComputeProvisioner(client, cfg).wait_updated(timeout=2) is False
    assert "waiter:function_updated_v2" in client.calls
    assert any("대기 초과" in r.getMessage() for r in caplog.records)


def test_invoke_prints_tail_log(cfg) -> None:
    printed: list[str] = []
    client = FakeLambda()
    client.invoke_response = {
        "StatusCode": 200,
        "LogResult": base64.b64encode(b"migrated 3 tables").decode(),
    }

    ComputeProvisioner(client, cfg, echo=printed.append).invoke("migrate")

    assert printed == ["migrated 3 tables"]


def test_invoke_function_error(cfg) -> None:
    printed: list[str] = []
    client = FakeLambda()
    client.invoke_response = {
        "StatusCode": 200,
        "FunctionError": "Unhandled",
        "Payload": io.BytesIO(b'{"errorMessage": "boom"}'),
    }

    with pytest.raises(FunctionExecutionError):
        ComputeProvisioner(client, cfg, echo=printed.append).invoke("migrate")

    assert printed == ['{"errorMessage": "boom"}']


def test_delete_is_best_effort(cfg, client_error) -> None:
    client = FakeLambda()
    client.delete_error = client_error("ResourceConflictException", "in use")

    ComputeProvisioner(client, cfg).delete()

    assert client.calls == ["delete_function"]
