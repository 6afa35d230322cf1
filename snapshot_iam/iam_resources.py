"""
iam_resources
-------------

스냅샷 파이프라인이 필요로 하는 IAM 리소스의 "원하는 상태"를 선언하는 모듈.

여기서는 GCP 를 호출하지 않는다. 설정값으로부터 서비스 계정, 커스텀 역할,
역할 바인딩, 출력값(outputs)을 계산만 하며, 실제 적용은 gcp_iam 등의
어댑터 모듈이 담당한다.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .config import SnapshotIamConfig


SERVICE_ACCOUNT_ID_RE = re.compile(r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$")
CUSTOM_ROLE_ID_RE = re.compile(r"^[a-zA-Z0-9_.]{3,64}$")

SCOPE_PROJECT = "project"
SCOPE_TOPIC = "topic"

# fetcher: 데이터셋의 테이블 목록 조회 + 토픽 발행
FETCHER_PROJECT_ROLES = ["roles/bigquery.metadataViewer"]
PUBLISHER_ROLE = "roles/pubsub.publisher"

# creator: 스냅샷 생성용 커스텀 역할 + 쿼리/복사 잡 실행
CREATOR_PROJECT_ROLES = ["roles/bigquery.jobUser"]

SNAPSHOT_CREATOR_PERMISSIONS = [
    "bigquery.tables.create",
    "bigquery.tables.createSnapshot",
    "bigquery.tables.get",
    "bigquery.tables.getData",
    "bigquery.tables.update",
    "bigquery.tables.updateData",
]

PRIMITIVE_ROLES = frozenset({"roles/owner", "roles/editor", "roles/viewer"})


@dataclass(frozen=True)
class ServiceAccount:
    account_id: str
    display_name: str
    description: str
    project_id: str

    @property
    def email(self) -> str:
        return f"{self.account_id}@{self.project_id}.iam.gserviceaccount.com"

    @property
    def member(self) -> str:
        return f"serviceAccount:{self.email}"


@dataclass(frozen=True)
class CustomRole:
    role_id: str
    title: str
    description: str
    permissions: Tuple[str, ...]
    project_id: str
    stage: str = "GA"

    @property
    def name(self) -> str:
        return f"projects/{self.project_id}/roles/{self.role_id}"


@dataclass(frozen=True)
class RoleBinding:
    """
    하나의 (역할, 멤버) 바인딩.

    scope 가 "project" 이면 resource 는 프로젝트 ID,
    "topic" 이면 Pub/Sub 토픽 이름이다.
    """

    role: str
    member: str
    scope: str
    resource: str

    def describe(self) -> str:
        return f"{self.scope}:{self.resource} {self.role} -> {self.member}"


@dataclass
class IamResources:
    project_id: str
    fetcher: ServiceAccount
    creator: ServiceAccount
    creator_role: CustomRole
    bindings: List[RoleBinding] = field(default_factory=list)

    @property
    def service_accounts(self) -> List[ServiceAccount]:
        return [self.fetcher, self.creator]

    @property
    def topic_name(self) -> Optional[str]:
        for b in self.bindings:
            if b.scope == SCOPE_TOPIC:
                return b.resource
        return None

    def outputs(self) -> Dict[str, str]:
        return {
            "fetcher_service_account_email": self.fetcher.email,
            "creator_service_account_email": self.creator.email,
        }

    def expected_roles(self, member: str, scope: str = SCOPE_PROJECT) -> Set[str]:
        return {b.role for b in self.bindings if b.member == member and b.scope == scope}


def _validate_ids(cfg: SnapshotIamConfig) -> None:
    errors: List[str] = []
    for label, value in (
        ("FETCHER_SA_ID", cfg.fetcher_sa_id),
        ("CREATOR_SA_ID", cfg.creator_sa_id),
    ):
        if not SERVICE_ACCOUNT_ID_RE.match(value):
            errors.append(
                f"{label}={value!r} (소문자/숫자/하이픈, 6~30자, 소문자로 시작해야 함)"
            )
    if cfg.fetcher_sa_id == cfg.creator_sa_id:
        errors.append("FETCHER_SA_ID 와 CREATOR_SA_ID 는 서로 달라야 합니다.")
    if not CUSTOM_ROLE_ID_RE.match(cfg.creator_role_id):
        errors.append(
            f"CREATOR_ROLE_ID={cfg.creator_role_id!r} (영문/숫자/_/., 3~64자)"
        )
    if errors:
        raise ValueError("잘못된 리소스 ID 가 있습니다: " + "; ".join(errors))


def build_iam_resources(cfg: SnapshotIamConfig) -> IamResources:
    """
    설정으로부터 원하는 IAM 상태를 계산한다. 같은 설정이면 항상 같은 결과.
    """
    _validate_ids(cfg)
    project = cfg.gcp_project_id

    fetcher = ServiceAccount(
        account_id=cfg.fetcher_sa_id,
        display_name="BigQuery Snapshot Fetcher",
        description="데이터셋의 테이블 목록을 조회하고 스냅샷 대상을 토픽으로 발행",
        project_id=project,
    )
    creator = ServiceAccount(
        account_id=cfg.creator_sa_id,
        display_name="BigQuery Snapshot Creator",
        description="토픽 메시지를 받아 테이블 스냅샷을 생성",
        project_id=project,
    )
    creator_role = CustomRole(
        role_id=cfg.creator_role_id,
        title="BigQuery Snapshot Creator",
        description="테이블 스냅샷 생성에 필요한 최소 권한",
        permissions=tuple(sorted(set(SNAPSHOT_CREATOR_PERMISSIONS))),
        project_id=project,
    )

    bindings: List[RoleBinding] = []
    for role in FETCHER_PROJECT_ROLES:
        bindings.append(RoleBinding(role, fetcher.member, SCOPE_PROJECT, project))

    if cfg.topic_scoped_publisher:
        bindings.append(
            RoleBinding(PUBLISHER_ROLE, fetcher.member, SCOPE_TOPIC, cfg.snapshot_topic_name)
        )
    else:
        bindings.append(RoleBinding(PUBLISHER_ROLE, fetcher.member, SCOPE_PROJECT, project))

    bindings.append(RoleBinding(creator_role.name, creator.member, SCOPE_PROJECT, project))
    for role in CREATOR_PROJECT_ROLES:
        bindings.append(RoleBinding(role, creator.member, SCOPE_PROJECT, project))

    return IamResources(
        project_id=project,
        fetcher=fetcher,
        creator=creator,
        creator_role=creator_role,
        bindings=bindings,
    )


def render_plan(resources: IamResources) -> List[str]:
    lines: List[str] = []
    lines.append("## Service accounts")
    for sa in resources.service_accounts:
        lines.append(f"- {sa.account_id} ({sa.email})")
    lines.append("")

    role = resources.creator_role
    lines.append("## Custom role")
    lines.append(f"- {role.name} [{role.stage}]")
    for perm in role.permissions:
        lines.append(f"  - {perm}")
    lines.append("")

    lines.append("## Bindings")
    for b in resources.bindings:
        lines.append(f"- {b.describe()}")
    lines.append("")

    lines.append("## Outputs")
    for key, value in resources.outputs().items():
        lines.append(f"- {key}: {value}")
    return lines
