from __future__ import annotations

import ipaddress
import json
import os
import re
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError
from .logging_utils import get_logger


logger = get_logger(__name__)


DEFAULT_CONFIG_FILE = "lambda_kit.json"
ENV_FILES_DEFAULT_ORDER = [".env", ".env.aws"]

DEFAULT_REGION = "us-west-2"
DEFAULT_STAGE = "dev"
DEFAULT_TIMEOUT = 30
DEFAULT_MEMORY = 512
DEFAULT_RUNTIME = "python3.11"
DEFAULT_ENTRY = "app"
PLATFORM_LAMBDA = "lambda"

_BUCKET_PATTERN = re.compile(r"^[a-z0-9.-]+$")


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다. (AWS_PROFILE, AWS_REGION 등을 boto3 가 읽을 수 있도록)
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def is_valid_bucket_name(name: str) -> bool:
    """S3 버킷 이름 규칙 검사."""
    if not (3 <= len(name) <= 63) or not _BUCKET_PATTERN.match(name):
        return False
    if ".." in name:
        return False
    if name.startswith(("xn--", "sthree")):
        return False
    if name.endswith(("-s3alias", "--ol-s3")):
        return False
    try:
        ipaddress.ip_address(name)
        return False
    except ValueError:
        return True


@dataclass
class PlatformConfig:
    name: str = PLATFORM_LAMBDA
    runtime: str = DEFAULT_RUNTIME
    timeout: int = DEFAULT_TIMEOUT
    role: str = ""
    memory: int = DEFAULT_MEMORY
    handler: str = ""
    keep_warm: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlatformConfig":
        return cls(
            name=data.get("name") or PLATFORM_LAMBDA,
            runtime=data.get("runtime") or DEFAULT_RUNTIME,
            timeout=int(data.get("timeout") or DEFAULT_TIMEOUT),
            role=data.get("role") or "",
            memory=int(data.get("memory") or DEFAULT_MEMORY),
            handler=data.get("handler") or "",
            keep_warm=bool(data.get("keep_warm", False)),
        )


@dataclass
class DeploymentConfig:
    name: str
    stage: str = DEFAULT_STAGE
    bucket: str = ""
    region: str = DEFAULT_REGION
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    dir: str = "."
    entry: str = DEFAULT_ENTRY

    @property
    def function_name(self) -> str:
        # role/log group/stack/API/버킷 객체 이름이 모두 이 값에서 파생된다.
        return f"{self.name}-{self.stage}"

    @property
    def log_group_name(self) -> str:
        return f"/aws/lambda/{self.function_name}"

    @property
    def handler(self) -> str:
        return self.platform.handler or f"{self.entry}.handler"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["lambda"] = data.pop("platform")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentConfig":
        if not data.get("name"):
            raise ConfigError("설정 파일에 name 이 없습니다.")
        cfg = cls(
            name=data["name"],
            stage=data.get("stage") or DEFAULT_STAGE,
            bucket=data.get("bucket") or "",
            region=data.get("region") or DEFAULT_REGION,
            platform=PlatformConfig.from_dict(data.get("lambda") or {}),
            dir=data.get("dir") or ".",
            entry=data.get("entry") or DEFAULT_ENTRY,
        )
        cfg.validate()
        return cfg

    @classmethod
    def defaults(cls, work_dir: str = ".", region: Optional[str] = None) -> "DeploymentConfig":
        """
        init 용 기본 설정. 이름은 작업 디렉토리 이름, 버킷은 타임스탬프 기반.
        """
        abs_dir = os.path.abspath(work_dir)
        name = re.sub(r"[^a-z0-9-]", "-", os.path.basename(abs_dir).lower()).strip("-") or "app"
        if region is None:
            from .aws_clients import detect_region

            region = detect_region(DEFAULT_REGION)
        return cls(
            name=name,
            stage=DEFAULT_STAGE,
            bucket=f"lambda-kit-{int(time.time())}",
            region=region,
            dir=abs_dir,
        )

    def apply_env_overrides(self) -> "DeploymentConfig":
        self.stage = os.getenv("LAMBDA_KIT_STAGE") or self.stage
        self.region = os.getenv("LAMBDA_KIT_REGION") or self.region
        self.bucket = os.getenv("LAMBDA_KIT_BUCKET") or self.bucket
        self.platform.keep_warm = _get_bool("LAMBDA_KIT_KEEP_WARM", self.platform.keep_warm)
        self.validate()
        return self

    def validate(self) -> None:
        missing = [k for k in ("name", "stage", "bucket", "region") if not getattr(self, k)]
        if missing:
            raise ConfigError("필수 설정이 누락되었습니다: " + ", ".join(missing))
        if not is_valid_bucket_name(self.bucket):
            raise ConfigError(
                f"잘못된 S3 버킷 이름입니다: {self.bucket!r} "
                "(https://docs.aws.amazon.com/AmazonS3/latest/userguide/bucketnamingrules.html)"
            )


def read_config(path: str = DEFAULT_CONFIG_FILE) -> DeploymentConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(
            f"설정 파일이 없습니다: {path} (`lambda-kit init` 으로 생성하세요)", cause=e
        ) from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"설정 파일 형식이 잘못되었습니다: {path}: {e}", cause=e) from e
    return DeploymentConfig.from_dict(data)


def write_config(cfg: DeploymentConfig, path: str = DEFAULT_CONFIG_FILE) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(cfg.to_dict(), f, indent="\t")
        f.write("\n")


def persist_config_async(cfg: DeploymentConfig, path: str = DEFAULT_CONFIG_FILE) -> threading.Thread:
    """
    파생된 설정(role ARN, handler)만 백그라운드에서 설정 파일에 반영한다.

    메모리의 cfg 에는 환경변수 override(stage/bucket/region)와 절대 경로로 바뀐 dir 이
    섞여 있으므로 통째로 쓰지 않는다. 디스크의 파일을 다시 읽어 파생 값만 덮어쓴다.

    배포 흐름은 완료를 기다리지 않는다. 실패는 warning 로그로만 남긴다.
    호출자는 필요하면 반환된 스레드를 join 할 수 있다.
    """
    role = cfg.platform.role
    handler = cfg.platform.handler

    def _write() -> None:
        try:
            stored = read_config(path)
            stored.platform.role = role
            if handler:
                stored.platform.handler = handler
            write_config(stored, path)
            logger.debug("설정 파일 저장 완료: %s", path)
        except (OSError, ConfigError) as e:
            logger.warning("설정 파일 저장 실패 (무시하고 계속): %s: %s", path, e)

    thread = threading.Thread(target=_write, name="lambda-kit-config-writer", daemon=True)
    thread.start()
    return thread
