"""
packaging
---------

빌드 결과 디렉토리를 업로드 가능한 zip 하나로 만드는 모듈.

언어별 빌드(가상환경 탐지, wheel 해석, 바이너리 컴파일)는 범위 밖이며,
Builder 프로토콜만 맞추면 어떤 빌더든 주입할 수 있다.
기본 SourceBuilder 는 소스 복사 + requirements.txt 설치만 한다.
"""

from __future__ import annotations

import os
import shutil
import sys
import tempfile
import time
import zipfile
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from .config import DEFAULT_CONFIG_FILE, DeploymentConfig
from .exceptions import LocalIOError
from .logging_utils import get_logger
from .subprocess_utils import run_command


logger = get_logger(__name__)


ARCHIVE_FILE = "lambda_kit.zip"
REQUIREMENTS_FILE = "requirements.txt"

DEFAULT_EXCLUDES = frozenset(
    {
        ".git",
        ".hg",
        ".venv",
        "venv",
        "__pycache__",
        ".pytest_cache",
        "node_modules",
        ".env",
        ".env.aws",
        DEFAULT_CONFIG_FILE,
    }
)


@dataclass(frozen=True)
class BuildResult:
    package_dir: str
    handler: str


@dataclass(frozen=True)
class Artifact:
    path: str
    size: int

    @property
    def key(self) -> str:
        return os.path.basename(self.path)


class Builder(Protocol):
    def build(self, cfg: DeploymentConfig) -> BuildResult: ...


class SourceBuilder:
    """프로젝트 디렉토리를 임시 빌드 디렉토리로 복사하고 의존성을 설치한다."""

    def __init__(self, excludes: Iterable[str] = DEFAULT_EXCLUDES, install_requirements: bool = True) -> None:
        self.excludes = frozenset(excludes)
        self.install_requirements = install_requirements

    def _ignore(self, _dir: str, names: list[str]) -> set[str]:
        return {n for n in names if n in self.excludes or n.endswith(".pyc")}

    def build(self, cfg: DeploymentConfig) -> BuildResult:
        src = os.path.abspath(cfg.dir)
        if not os.path.isdir(src):
            raise LocalIOError(f"프로젝트 디렉토리가 없습니다: {src}")

        build_dir = os.path.join(tempfile.mkdtemp(prefix="lambda-kit-build-"), "package")
        logger.info("빌드 디렉토리로 소스 복사: %s -> %s", src, build_dir)
        try:
            shutil.copytree(src, build_dir, ignore=self._ignore)
        except (OSError, shutil.Error) as e:
            raise LocalIOError(f"소스 복사 실패: {src}", cause=e) from e

        requirements = os.path.join(build_dir, REQUIREMENTS_FILE)
        if self.install_requirements and os.path.exists(requirements):
            run_command(
                [sys.executable, "-m", "pip", "install", "-r", requirements, "-t", build_dir, "--quiet"],
                spinner_message="의존성 설치 중",
            )

        return BuildResult(package_dir=build_dir, handler=cfg.handler)


def artifact_name(function_name: str) -> str:
    """버킷 객체 키로도 쓰이는 아카이브 파일 이름. 예: shop-dev-1700000000.zip"""
    return f"{function_name}-{int(time.time())}.zip"


def archive_directory(
    source_dir: str,
    archive_path: Optional[str] = None,
    archive_name: str = ARCHIVE_FILE,
) -> Artifact:
    """
    source_dir 아래 파일을 상대 경로 그대로 zip 으로 묶는다.
    archive_path 가 없으면 새 임시 디렉토리에 archive_name 으로 만든다.
    """
    if archive_path is None:
        archive_path = os.path.join(tempfile.mkdtemp(prefix="lambda-kit-"), archive_name)

    logger.debug("패키지 압축: %s -> %s", source_dir, archive_path)
    try:
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for root, dirs, files in os.walk(source_dir):
                dirs.sort()
                for name in sorted(files):
                    full = os.path.join(root, name)
                    zf.write(full, os.path.relpath(full, source_dir))
    except OSError as e:
        raise LocalIOError(f"패키지 압축 실패: {archive_path}", cause=e) from e

    return Artifact(path=archive_path, size=os.path.getsize(archive_path))


def remove_local_artifact(artifact: Artifact) -> None:
    """아카이브와 그것을 담은 임시 디렉토리를 지운다."""
    parent = os.path.dirname(artifact.path)
    try:
        os.remove(artifact.path)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise LocalIOError(f"로컬 패키지 삭제 실패: {artifact.path}", cause=e) from e
    if os.path.basename(parent).startswith("lambda-kit-"):
        shutil.rmtree(parent, ignore_errors=True)
