import os
import sys
from typing import Optional

import click

from .config import (
    DEFAULT_CONFIG_FILE,
    DeploymentConfig,
    load_env_files,
    read_config,
    write_config,
)
from .exceptions import LambdaKitError
from .logging_utils import setup_logging, get_logger
from .orchestrator import Orchestrator


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="설정 파일 이름 (작업 디렉토리 기준)",
)
@click.option("--profile", default=None, help="사용할 AWS 프로파일")
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-vv 는 boto3 로그까지 출력)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, config_file: str, profile: Optional[str], verbose: int) -> None:
    """AWS Lambda + API Gateway 배포용 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["config_path"] = os.path.join(chdir, config_file)
    ctx.obj["profile"] = profile


def _load_config_from_ctx(ctx: click.Context) -> DeploymentConfig:
    load_env_files(ctx.obj["chdir"])
    cfg = read_config(ctx.obj["config_path"]).apply_env_overrides()
    if not os.path.isabs(cfg.dir):
        cfg.dir = os.path.join(ctx.obj["chdir"], cfg.dir)
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _orchestrator_from_ctx(ctx: click.Context) -> Orchestrator:
    try:
        cfg = _load_config_from_ctx(ctx)
        return Orchestrator.from_config(
            cfg,
            config_path=ctx.obj["config_path"],
            profile=ctx.obj["profile"],
        )
    except LambdaKitError as e:
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)


def _fail(action: str, e: LambdaKitError) -> None:
    logger.debug("%s 실패", action, exc_info=True)
    click.echo(f"[ERROR] {action} 실패: {e}", err=True)
    sys.exit(1)


@main.command()
@click.option("--name", default=None, help="프로젝트 이름 (기본: 디렉토리 이름)")
@click.option("--stage", default=None, help="배포 stage (기본: dev)")
@click.option("--region", default=None, help="AWS 리전 (기본: AWS 설정 또는 us-west-2)")
@click.option("--bucket", default=None, help="S3 버킷 (기본: lambda-kit-<timestamp>)")
@click.pass_context
def init(ctx: click.Context, name: Optional[str], stage: Optional[str], region: Optional[str], bucket: Optional[str]) -> None:
    """현재 디렉토리에 기본 설정 파일(lambda_kit.json)을 생성한다."""
    path: str = ctx.obj["config_path"]
    if os.path.exists(path):
        click.echo(f"{path} 이(가) 이미 존재하여 건너뜀")
        return

    load_env_files(ctx.obj["chdir"])
    cfg = DeploymentConfig.defaults(ctx.obj["chdir"], region=region)
    cfg.name = name or cfg.name
    cfg.stage = stage or cfg.stage
    cfg.bucket = (bucket or cfg.bucket).lower()
    try:
        cfg.validate()
    except LambdaKitError as e:
        _fail("설정 생성", e)

    write_config(cfg, path)
    click.echo(f"{path} 를 생성했습니다. (function: {cfg.function_name})")


@main.command()
@click.pass_context
def deploy(ctx: click.Context) -> None:
    """함수 + API Gateway 를 배포한다. 이미 배포되어 있으면 업데이트한다."""
    orch = _orchestrator_from_ctx(ctx)
    try:
        orch.deploy()
    except LambdaKitError as e:
        _fail("배포", e)
    click.echo("Done!")


@main.command(name="package")
@click.option(
    "-o",
    "--output",
    "output_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="zip 을 저장할 경로 (기본: 임시 디렉토리)",
)
@click.pass_context
def package_cmd(ctx: click.Context, output_path: Optional[str]) -> None:
    """배포 없이 업로드용 zip 만 만든다. 결과는 update --artifact 로 올릴 수 있다."""
    orch = _orchestrator_from_ctx(ctx)
    try:
        artifact = orch.package(output_path)
    except LambdaKitError as e:
        _fail("패키징", e)
    click.echo(f"package: {artifact.path} ({artifact.size} bytes)")


@main.command()
@click.option(
    "--artifact",
    "artifact_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="이미 만들어둔 zip 을 그대로 올린다 (기본: 새로 빌드)",
)
@click.pass_context
def update(ctx: click.Context, artifact_path: Optional[str]) -> None:
    """코드를 다시 빌드해서 새 버전으로 올린다."""
    orch = _orchestrator_from_ctx(ctx)
    try:
        orch.update(artifact_path)
    except LambdaKitError as e:
        _fail("업데이트", e)
    click.echo("Done!")


@main.command()
@click.option("-y", "--yes", is_flag=True, help="확인 없이 바로 삭제")
@click.pass_context
def undeploy(ctx: click.Context, yes: bool) -> None:
    """API Gateway, 함수, 로그 그룹을 삭제한다. (IAM role 은 유지)"""
    orch = _orchestrator_from_ctx(ctx)
    if not yes:
        click.confirm(f"{orch.cfg.function_name} 배포를 삭제할까요?", abort=True)
    try:
        orch.undeploy()
    except LambdaKitError as e:
        _fail("배포 제거", e)
    click.echo("Done!")


@main.command()
@click.option("-n", "--steps", type=int, default=1, show_default=True, help="몇 버전 전으로 되돌릴지")
@click.pass_context
def rollback(ctx: click.Context, steps: int) -> None:
    """이전 버전 코드를 새 버전으로 다시 publish 한다."""
    orch = _orchestrator_from_ctx(ctx)
    click.echo("Rolling back deployment...")
    try:
        orch.rollback(steps)
    except LambdaKitError as e:
        _fail("rollback", e)
    click.echo("Done!")


@main.command()
@click.pass_context
def logs(ctx: click.Context) -> None:
    """CloudWatch 로그를 계속 출력한다. (Ctrl-C 로 종료)"""
    orch = _orchestrator_from_ctx(ctx)
    try:
        orch.logs()
    except KeyboardInterrupt:
        click.echo("")
    except LambdaKitError as e:
        _fail("로그 조회", e)


@main.command(name="invoke")
@click.argument("command", nargs=-1, required=True)
@click.pass_context
def invoke(ctx: click.Context, command: tuple) -> None:
    """배포된 함수에 관리 명령을 보낸다. 예: lambda-kit invoke migrate"""
    orch = _orchestrator_from_ctx(ctx)
    try:
        orch.invoke(" ".join(command))
    except LambdaKitError as e:
        _fail("함수 호출", e)


@main.command()
@click.pass_context
def metrics(ctx: click.Context) -> None:
    """최근 24시간 호출 수/에러 수/에러율을 출력한다."""
    orch = _orchestrator_from_ctx(ctx)
    try:
        summary = orch.metrics()
    except LambdaKitError as e:
        _fail("지표 조회", e)
    click.echo(summary.render(orch.cfg.function_name))


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """
    배포 전에 버킷/함수 상태를 점검한다.
    (실제 리소스 생성/변경은 하지 않는다)
    """
    orch = _orchestrator_from_ctx(ctx)
    report, has_issues = orch.check()
    click.echo(report)

    # 치명적인 이슈가 있으면 exit 1 로 종료하여 CI 등에서 감지 가능하게 한다.
    if has_issues:
        sys.exit(1)
