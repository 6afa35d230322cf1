import json
import sys
from typing import Optional

import click

from .config import load_env_files, SnapshotIamConfig
from .logging_utils import setup_logging, get_logger
from .orchestrator import ALL_SECTIONS, apply_all, audit_all, check_all, outputs, plan_all


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
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-vv 는 google 라이브러리 로그까지)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """BigQuery 스냅샷 파이프라인 IAM(서비스 계정/커스텀 역할/바인딩) 관리 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _load_config_from_ctx(ctx: click.Context) -> SnapshotIamConfig:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    cfg = SnapshotIamConfig.from_env()
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _load_or_exit(ctx: click.Context) -> SnapshotIamConfig:
    try:
        return _load_config_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)


@main.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """원하는 IAM 상태(계정/역할/바인딩/outputs)와 섹션별 ENABLED/SKIPPED 상태를 출력"""
    cfg = _load_or_exit(ctx)
    try:
        report = plan_all(cfg)
    except ValueError as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(1)
    click.echo(report)


@main.command(name="apply")
@click.option(
    "--only",
    "only",
    type=str,
    default="",
    help="쉼표로 구분된 섹션 이름(apis,topic,dataset,accounts,role,bindings). "
    "기본 동작은 .env.infra 의 ENABLE_*/ENSURE_* 토글을 사용합니다.",
)
@click.pass_context
def apply(ctx: click.Context, only: str) -> None:
    """서비스 계정/커스텀 역할/바인딩을 실제로 생성/갱신"""
    cfg = _load_or_exit(ctx)

    only_list: Optional[list[str]] = None
    if only.strip():
        only_list = [p.strip() for p in only.split(",") if p.strip()]

        invalid = sorted({s for s in only_list if s not in ALL_SECTIONS})
        if invalid:
            click.echo(
                "[ERROR] 잘못된 섹션 이름이 있습니다: "
                + ", ".join(invalid)
                + f"\n허용되는 섹션: {', '.join(ALL_SECTIONS)}",
                err=True,
            )
            sys.exit(1)

    try:
        summary, has_failures = apply_all(cfg, only_sections=only_list)
    except Exception as e:  # noqa: BLE001
        logger.exception("적용 중 오류 발생")
        click.echo(f"[ERROR] 적용 실패: {e}", err=True)
        sys.exit(1)

    click.echo(summary)

    if has_failures:
        sys.exit(1)


@main.command()
@click.option(
    "-a",
    "--all",
    "show_all",
    is_flag=True,
    help="모든 체크 항목의 상세 상태를 출력합니다. (기본은 이슈만 요약)",
)
@click.pass_context
def check(ctx: click.Context, show_all: bool) -> None:
    """
    GCP 의 현재 IAM 상태가 선언과 일치하는지 점검한다.
    (실제 리소스 생성/변경은 하지 않는다)
    """
    cfg = _load_or_exit(ctx)

    try:
        report, has_issues = check_all(cfg, show_all=show_all)
    except Exception as e:  # noqa: BLE001
        logger.exception("사전 체크 중 오류 발생")
        click.echo(f"[ERROR] 체크 실패: {e}", err=True)
        sys.exit(1)

    click.echo(report)

    if has_issues:
        sys.exit(1)


@main.command()
@click.pass_context
def audit(ctx: click.Context) -> None:
    """서비스 계정이 선언된 최소 권한만 가지고 있는지 프로젝트 정책을 감사"""
    cfg = _load_or_exit(ctx)

    try:
        report, has_violations = audit_all(cfg)
    except Exception as e:  # noqa: BLE001
        logger.exception("감사 중 오류 발생")
        click.echo(f"[ERROR] 감사 실패: {e}", err=True)
        sys.exit(1)

    click.echo(report)

    if has_violations:
        sys.exit(1)


@main.command(name="outputs")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["text", "json", "env"]),
    default="text",
    show_default=True,
    help="env 는 다른 배포 레이어의 .env 에 바로 붙여넣을 수 있는 형식입니다.",
)
@click.pass_context
def outputs_cmd(ctx: click.Context, fmt: str) -> None:
    """fetcher / creator 서비스 계정 이메일을 출력"""
    cfg = _load_or_exit(ctx)
    try:
        values = outputs(cfg)
    except ValueError as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(1)

    if fmt == "json":
        click.echo(json.dumps(values, indent=2))
    elif fmt == "env":
        for key, value in values.items():
            click.echo(f"{key.upper()}={value}")
    else:
        for key, value in values.items():
            click.echo(f"{key} = {value}")


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """
    현재 디렉토리에 env 템플릿(env.infra.example)을 복사하는 초기화.
    """
    import os
    from importlib import resources

    base_dir: str = ctx.obj["chdir"]
    name = "env.infra.example"
    target = os.path.join(base_dir, name)
    if os.path.exists(target):
        click.echo(f"{name} 이(가) 이미 존재하여 건너뜀")
        return
    try:
        with resources.files("snapshot_iam.examples").joinpath(name).open("r", encoding="utf-8") as src, open(
            target, "w", encoding="utf-8"
        ) as dst:
            dst.write(src.read())
        click.echo(f"{name} 템플릿을 생성했습니다.")
    except FileNotFoundError:
        click.echo(f"템플릿 {name} 을(를) 패키지에서 찾을 수 없습니다.", err=True)
        sys.exit(1)
