"""
subprocess_utils
----------------

빌드 단계에서 외부 명령(pip 등)을 실행하는 공통 유틸.
"""

from __future__ import annotations

import itertools
import subprocess
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from textwrap import shorten
from typing import IO, Iterator, Mapping, Optional, Sequence

from .exceptions import LocalIOError
from .logging_utils import get_logger


logger = get_logger(__name__)

DETAIL_WIDTH = 2000


@dataclass(frozen=True)
class CommandOutput:
    returncode: int
    stdout: str
    stderr: str


def _interactive(stream: IO[str]) -> bool:
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        # 닫힌 스트림
        return False


@contextmanager
def spinner(message: str, *, interval: float = 0.12, stream: Optional[IO[str]] = None) -> Iterator[None]:
    """
    pip 설치처럼 출력 없이 오래 걸리는 구간에 진행 표시를 그린다.
    터미널이 아니면(CI, 테스트) 아무것도 출력하지 않는다.
    """
    out = stream if stream is not None else sys.stderr
    if not _interactive(out):
        yield
        return

    done = threading.Event()
    started = time.monotonic()

    def _draw() -> None:
        for frame in itertools.cycle("|/-\\"):
            if done.is_set():
                break
            out.write(f"\r{message} {frame} {time.monotonic() - started:0.1f}s")
            out.flush()
            done.wait(interval)

    worker = threading.Thread(target=_draw, name="lambda-kit-spinner", daemon=True)
    worker.start()
    try:
        yield
    finally:
        done.set()
        worker.join(timeout=1.0)
        out.write("\r" + " " * (len(message) + 16) + "\r")
        out.flush()


def _failure_detail(e: subprocess.CalledProcessError) -> str:
    for label, text in (("stderr", e.stderr), ("stdout", e.stdout)):
        text = (text or "").strip()
        if text:
            return f"\n{label}:\n" + shorten(text, width=DETAIL_WIDTH)
    return ""


def run_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = 900.0,
    spinner_message: Optional[str] = None,
) -> CommandOutput:
    """
    명령을 실행하고 stdout/stderr 를 캡처한다.

    종료 코드 != 0, 타임아웃, 실행 파일 없음은 모두 LocalIOError 로 올린다.
    """
    printable = " ".join(cmd)
    logger.info("명령 실행: %s", printable)

    try:
        with spinner(spinner_message or shorten(printable, width=72, placeholder="…")):
            proc = subprocess.run(  # noqa: S603
                list(cmd),
                check=True,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=cwd,
                env=dict(env) if env is not None else None,
            )
    except FileNotFoundError as e:
        raise LocalIOError(f"필요한 명령을 찾을 수 없습니다: {cmd[0]}", cause=e) from e
    except subprocess.TimeoutExpired as e:
        raise LocalIOError(f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {printable}", cause=e) from e
    except subprocess.CalledProcessError as e:
        raise LocalIOError(
            f"명령 실행 실패: {printable} (exit={e.returncode}){_failure_detail(e)}", cause=e
        ) from e

    for label, text in (("stdout", proc.stdout), ("stderr", proc.stderr)):
        if text:
            logger.debug("명령 %s: %s", label, shorten(text.strip(), width=DETAIL_WIDTH))
    return CommandOutput(returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
