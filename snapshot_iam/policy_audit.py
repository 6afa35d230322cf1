"""
policy_audit
------------

프로젝트(및 Pub/Sub 토픽) IAM 정책을 읽어 각 서비스 계정이 "의도한 최소 권한"만 가지고
있는지 점검하는 모듈.

- MISSING   : 선언된 역할이 부여되어 있지 않음
- EXCESS    : 선언되지 않은 역할이 부여되어 있음 (문서보다 넓은 권한)
- PRIMITIVE : owner/editor/viewer 같은 기본 역할이 부여되어 있음
- DRIFT     : 커스텀 역할의 권한 목록이 선언과 다름

네 가지 모두 크리티컬로 취급한다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from .iam_resources import PRIMITIVE_ROLES, SCOPE_PROJECT, SCOPE_TOPIC, IamResources


FINDING_KINDS = ("MISSING", "EXCESS", "PRIMITIVE", "DRIFT")


@dataclass(frozen=True)
class Finding:
    kind: str
    subject: str
    detail: str

    def render(self) -> str:
        return f"[{self.kind}] {self.subject}: {self.detail}"


@dataclass
class AuditReport:
    project_id: str
    findings: List[Finding] = field(default_factory=list)
    checked_members: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.findings

    def by_kind(self, kind: str) -> List[Finding]:
        return [f for f in self.findings if f.kind == kind]

    def render(self) -> str:
        lines: List[str] = []
        lines.append("# IAM least-privilege audit")
        lines.append(f"- project: {self.project_id}")
        lines.append("")
        lines.append("## Checked members")
        for m in self.checked_members:
            lines.append(f"- {m}")
        lines.append("")
        lines.append("## Findings")
        if not self.findings:
            lines.append("- (none)")
        for kind in FINDING_KINDS:
            grouped = self.by_kind(kind)
            if not grouped:
                continue
            lines.append(f"### {kind} ({len(grouped)})")
            for f in grouped:
                lines.append(f"- {f.render()}")
        lines.append("")
        lines.append("## Summary")
        if self.ok:
            lines.append("- 상태: 모든 서비스 계정이 선언된 권한만 가지고 있습니다.")
        else:
            lines.append(f"- 상태: 위반 {len(self.findings)}건. 권한을 정리해야 합니다.")
        return "\n".join(lines)


def roles_for_member(policy: Dict[str, Any], member: str) -> Set[str]:
    """
    정책에서 멤버에게 부여된 역할 목록. 조건부 바인딩도 권한 부여로 본다.
    """
    roles: Set[str] = set()
    for entry in policy.get("bindings") or []:
        if member in (entry.get("members") or []):
            role = entry.get("role")
            if role:
                roles.add(role)
    return roles


def _diff_permissions(expected: Iterable[str], actual: Iterable[str]) -> Optional[str]:
    expected_set, actual_set = set(expected), set(actual)
    if expected_set == actual_set:
        return None
    parts: List[str] = []
    extra = sorted(actual_set - expected_set)
    missing = sorted(expected_set - actual_set)
    if extra:
        parts.append("추가 권한 " + ", ".join(extra))
    if missing:
        parts.append("누락 권한 " + ", ".join(missing))
    return "; ".join(parts)


def _compare_member_roles(
    report: AuditReport,
    subject: str,
    expected: Set[str],
    actual: Set[str],
) -> None:
    for role in sorted(expected - actual):
        report.findings.append(Finding("MISSING", subject, role))

    for role in sorted(actual - expected):
        kind = "PRIMITIVE" if role in PRIMITIVE_ROLES else "EXCESS"
        report.findings.append(Finding(kind, subject, role))


def audit_policy(
    resources: IamResources,
    policy: Dict[str, Any],
    role_permissions: Optional[Iterable[str]] = None,
    topic_policy: Optional[Dict[str, Any]] = None,
) -> AuditReport:
    """
    프로젝트 정책(get-iam-policy 결과)을 선언된 상태와 비교한다.

    role_permissions 가 주어지면 커스텀 역할의 실제 권한 목록도 비교한다.
    topic_policy 가 주어지면 토픽 단위 바인딩도 같은 방식으로 비교한다.
    """
    report = AuditReport(project_id=resources.project_id)
    topic = resources.topic_name

    for sa in resources.service_accounts:
        report.checked_members.append(sa.member)
        _compare_member_roles(
            report,
            sa.email,
            resources.expected_roles(sa.member, SCOPE_PROJECT),
            roles_for_member(policy, sa.member),
        )

        if topic_policy is not None and topic:
            _compare_member_roles(
                report,
                f"{sa.email} (topic:{topic})",
                resources.expected_roles(sa.member, SCOPE_TOPIC),
                roles_for_member(topic_policy, sa.member),
            )

    if role_permissions is not None:
        role = resources.creator_role
        diff = _diff_permissions(role.permissions, role_permissions)
        if diff:
            report.findings.append(Finding("DRIFT", role.name, diff))

    return report
