from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .config import SnapshotIamConfig
from .gcloud import GcloudError
from .iam_resources import IamResources, build_iam_resources, render_plan
from .logging_utils import get_logger
from . import (
    gcp_iam,
    gcp_project,
    gcp_pubsub,
    gcp_bq,
    policy_audit,
)


logger = get_logger(__name__)

# 적용 순서 = 의존 순서 (바인딩은 계정/역할/토픽 이후)
ALL_SECTIONS: List[str] = [
    "apis",
    "topic",
    "dataset",
    "accounts",
    "role",
    "bindings",
]


def _section_enabled(name: str, cfg: SnapshotIamConfig) -> bool:
    if name == "apis":
        return cfg.enable_apis
    if name == "topic":
        return cfg.ensure_topic
    if name == "dataset":
        return cfg.ensure_target_dataset
    if name in ("accounts", "role", "bindings"):
        return True
    return False


def _dependencies(name: str, cfg: SnapshotIamConfig) -> List[str]:
    if name != "bindings":
        return []
    deps = ["accounts", "role"]
    if cfg.topic_scoped_publisher:
        deps.append("topic")
    return deps


def _filter_sections(cfg: SnapshotIamConfig, only_sections: Optional[Iterable[str]]) -> List[str]:
    """
    토글/only_sections 에 따라 실제 실행 대상 섹션 목록을 결정한다.
    """
    if only_sections:
        requested = {s for s in only_sections}
        return [s for s in ALL_SECTIONS if s in requested and _section_enabled(s, cfg)]
    return [s for s in ALL_SECTIONS if _section_enabled(s, cfg)]


def outputs(cfg: SnapshotIamConfig) -> Dict[str, str]:
    return build_iam_resources(cfg).outputs()


def plan_all(cfg: SnapshotIamConfig) -> str:
    """
    원하는 IAM 상태와 섹션별 활성화 여부를 요약 텍스트로 리턴한다.
    실제 GCP 호출은 하지 않는다.
    """
    resources = build_iam_resources(cfg)

    lines: List[str] = []
    lines.append("# Snapshot IAM plan")
    lines.append(f"- project: {cfg.gcp_project_id}")
    lines.append(f"- region: {cfg.gcp_region}")
    lines.append(f"- topic: {cfg.snapshot_topic_name}")
    lines.append(f"- target_dataset: {cfg.target_dataset_id or '(not set)'}")
    lines.append("")

    lines.extend(render_plan(resources))
    lines.append("")

    lines.append("## Sections")
    for name in ALL_SECTIONS:
        enabled = _section_enabled(name, cfg)
        status = "ENABLED" if enabled else "SKIPPED"
        lines.append(f"- {name}: {status}")

    return "\n".join(lines)


def _run_section(name: str, cfg: SnapshotIamConfig, resources: IamResources) -> List[str]:
    details: List[str] = []
    if name == "apis":
        gcp_project.ensure_apis(cfg)
    elif name == "topic":
        gcp_pubsub.ensure_topic(cfg)
    elif name == "dataset":
        gcp_bq.ensure_target_dataset(cfg)
    elif name == "accounts":
        for sa in resources.service_accounts:
            status = gcp_iam.ensure_service_account(sa)
            details.append(f"{sa.email}: {status}")
    elif name == "role":
        status = gcp_iam.ensure_custom_role(resources.creator_role)
        details.append(f"{resources.creator_role.name}: {status}")
    elif name == "bindings":
        for binding in resources.bindings:
            status = gcp_iam.ensure_binding(binding, project_id=resources.project_id)
            details.append(f"{binding.describe()}: {status}")
    return details


def apply_all(cfg: SnapshotIamConfig, only_sections: Optional[Iterable[str]] = None) -> tuple[str, bool]:
    """
    섹션별로 실제 적용 로직을 호출한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_failures: 하나 이상의 섹션에서 예외가 발생했거나 막혔는지 여부
    """
    resources = build_iam_resources(cfg)

    executed: List[str] = []
    skipped: List[str] = []
    failed: List[str] = []
    blocked: List[str] = []
    details: List[str] = []

    sections = _filter_sections(cfg, only_sections)

    logger.info("적용 대상 섹션: %s", sections)

    for name in ALL_SECTIONS:
        if name not in sections:
            skipped.append(name)
            continue

        broken = [d for d in _dependencies(name, cfg) if d in failed or d in blocked]
        if broken:
            logger.error("선행 섹션 실패로 실행하지 않습니다: %s (원인: %s)", name, broken)
            blocked.append(name)
            continue

        logger.info("섹션 실행: %s", name)

        try:
            details.extend(f"{name}: {d}" for d in _run_section(name, cfg, resources))
        except Exception:  # noqa: BLE001
            failed.append(name)
            logger.exception("섹션 실행 실패: %s", name)
            continue

        executed.append(name)

    lines: List[str] = []
    lines.append("# Snapshot IAM apply summary")
    lines.append(f"- project: {cfg.gcp_project_id}")
    lines.append("")

    for title, items in (
        ("Executed sections", executed),
        ("Skipped sections", skipped),
        ("Failed sections", failed),
        ("Blocked sections", blocked),
        ("Changes", details),
    ):
        lines.append(f"## {title}")
        if items:
            for s in items:
                lines.append(f"- {s}")
        else:
            lines.append("- (none)")
        lines.append("")

    if not (failed or blocked):
        lines.append("## Outputs")
        for key, value in resources.outputs().items():
            lines.append(f"- {key}: {value}")

    summary = "\n".join(lines).rstrip()
    return summary, bool(failed or blocked)


def check_all(cfg: SnapshotIamConfig, show_all: bool = False) -> tuple[str, bool]:
    """
    실제 리소스 생성 없이, 현재 설정과 GCP 리소스 상태를 종합적으로 점검한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_issues: 크리티컬 또는 경고가 하나라도 있는지 여부
    """
    resources = build_iam_resources(cfg)

    lines: List[str] = []
    critical: List[str] = []
    warnings: List[str] = []

    lines.append("# Snapshot IAM pre-check")
    lines.append(f"- project: {cfg.gcp_project_id}")
    lines.append("")

    def _classify(status: str, *, creatable: bool = True) -> None:
        if show_all:
            lines.append(f"- {status}")
        # 비활성화된 서비스 계정은 apply 로 되살리지 않는다
        if "조회 실패" in status or "Project: 없음" in status or "비활성화됨" in status:
            critical.append(status)
        elif "없음" in status or "비활성화" in status or "불일치" in status or "삭제됨" in status:
            # 우리 패키지가 생성/갱신할 수 있으면 경고
            (warnings if creatable else critical).append(status)

    checks = [
        ("APIs", lambda: gcp_project.check_apis(cfg), cfg.enable_apis),
        ("Pub/Sub", lambda: [gcp_pubsub.check_topic(cfg)], cfg.ensure_topic),
        ("BigQuery", lambda: [gcp_bq.check_target_dataset(cfg)], cfg.ensure_target_dataset),
        (
            "Service accounts",
            lambda: [gcp_iam.check_service_account(sa) for sa in resources.service_accounts],
            True,
        ),
        ("Custom role", lambda: [gcp_iam.check_custom_role(resources.creator_role)], True),
        (
            "Bindings",
            lambda: [
                gcp_iam.check_binding(b, project_id=resources.project_id)
                for b in resources.bindings
            ],
            True,
        ),
    ]

    for title, check, creatable in checks:
        lines.append(f"## {title}")
        try:
            for status in check():
                _classify(status, creatable=creatable)
        except Exception as e:  # noqa: BLE001
            msg = f"{title}: 체크 중 예외 발생: {e}"
            if show_all:
                lines.append(f"- {msg}")
            critical.append(msg)
        lines.append("")

    lines.append("## Summary")
    if critical:
        lines.append("- 상태: 크리티컬 이슈가 있습니다. 적용 전 반드시 해결해야 합니다.")
    elif warnings:
        lines.append("- 상태: 경고만 있습니다. apply 시 일부 리소스가 새로 생성/갱신됩니다.")
    else:
        lines.append("- 상태: 주요 이슈 없음 (원하는 상태와 일치합니다)")

    if show_all or critical:
        lines.append("")
        lines.append("### Critical issues")
        for i in critical or ["(none)"]:
            lines.append(f"- {i}")

    if show_all or warnings:
        lines.append("")
        lines.append("### Warnings (apply 시 생성/갱신 예정)")
        for i in warnings or ["(none)"]:
            lines.append(f"- {i}")

    if not show_all:
        lines.append("")
        lines.append("자세한 상태를 보려면 `bq-snapshot-iam check -a` 를 실행하세요.")

    summary = "\n".join(lines)
    return summary, bool(critical or warnings)


def audit_all(cfg: SnapshotIamConfig) -> tuple[str, bool]:
    """
    프로젝트 정책, 토픽 정책(토픽 단위 바인딩이 있을 때), 커스텀 역할 권한을 읽어
    최소 권한 위반을 점검한다.

    Returns:
        report: 텍스트 리포트
        has_violations: 위반이 하나라도 있는지 여부
    """
    resources = build_iam_resources(cfg)
    policy = gcp_iam.get_project_policy(cfg.gcp_project_id)
    permissions = gcp_iam.get_role_permissions(resources.creator_role)

    topic_policy: Optional[Dict[str, Any]] = None
    if resources.topic_name:
        try:
            topic_policy = gcp_iam.get_topic_policy(resources.topic_name, cfg.gcp_project_id)
        except GcloudError as e:
            if not e.not_found:
                raise
            # 토픽이 없으면 토픽 단위 역할은 전부 누락으로 보고된다
            logger.warning("Pub/Sub 토픽이 없습니다: %s", resources.topic_name)
            topic_policy = {}

    report = policy_audit.audit_policy(
        resources,
        policy,
        role_permissions=permissions,
        topic_policy=topic_policy,
    )
    if permissions is None:
        report.findings.append(
            policy_audit.Finding("MISSING", resources.creator_role.name, "커스텀 역할이 없습니다")
        )

    return report.render(), not report.ok
