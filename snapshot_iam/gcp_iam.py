"""
gcp_iam
-------

서비스 계정, 프로젝트 커스텀 역할, IAM 바인딩을 gcloud 로 생성/점검하는 모듈.

ensure_* 는 필요한 경우에만 리소스를 만들거나 갱신하고 (여러 번 실행해도 동일),
check_* 는 상태만 문자열로 돌려준다.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .gcloud import GcloudError, run_gcloud
from .iam_resources import (
    SCOPE_PROJECT,
    SCOPE_TOPIC,
    CustomRole,
    RoleBinding,
    ServiceAccount,
)
from .logging_utils import get_logger


logger = get_logger(__name__)


# -----------------------------
# Service accounts
# -----------------------------
def describe_service_account(sa: ServiceAccount) -> Optional[Dict[str, Any]]:
    try:
        return run_gcloud(
            ["iam", "service-accounts", "describe", sa.email],
            project=sa.project_id,
            as_json=True,
        )
    except GcloudError as e:
        if e.not_found:
            return None
        raise


def ensure_service_account(sa: ServiceAccount) -> str:
    """
    서비스 계정이 존재하는지 확인하고, 없다면 생성한다.
    """
    logger.info("서비스 계정 확인: %s", sa.email)
    if describe_service_account(sa) is not None:
        logger.info("기존 서비스 계정을 사용합니다: %s", sa.email)
        return "exists"

    try:
        run_gcloud(
            [
                "iam",
                "service-accounts",
                "create",
                sa.account_id,
                f"--display-name={sa.display_name}",
                f"--description={sa.description}",
            ],
            project=sa.project_id,
        )
    except GcloudError as e:
        # describe 와 create 사이에 다른 곳에서 만들어진 경우
        if e.already_exists:
            logger.warning("서비스 계정이 이미 생성되어 있습니다: %s", sa.email)
            return "exists"
        raise

    logger.info("서비스 계정을 생성했습니다: %s", sa.email)
    return "created"


def check_service_account(sa: ServiceAccount) -> str:
    try:
        info = describe_service_account(sa)
    except GcloudError as e:
        return f"Service account: 조회 실패 ({sa.email}, exit={e.returncode})"
    if info is None:
        return f"Service account: 없음 (생성이 필요함) ({sa.email})"
    if info.get("disabled"):
        return f"Service account: 비활성화됨 ({sa.email})"
    return f"Service account: 존재함 ({sa.email})"


# -----------------------------
# Custom role
# -----------------------------
def describe_custom_role(role: CustomRole) -> Optional[Dict[str, Any]]:
    try:
        return run_gcloud(
            ["iam", "roles", "describe", role.role_id],
            project=role.project_id,
            as_json=True,
        )
    except GcloudError as e:
        if e.not_found:
            return None
        raise


def _role_args(role: CustomRole) -> list[str]:
    return [
        f"--title={role.title}",
        f"--description={role.description}",
        f"--permissions={','.join(role.permissions)}",
        f"--stage={role.stage}",
    ]


def role_differs(role: CustomRole, current: Dict[str, Any]) -> bool:
    current_perms = set(current.get("includedPermissions") or [])
    if current_perms != set(role.permissions):
        return True
    if (current.get("title") or "") != role.title:
        return True
    return (current.get("stage") or "GA") != role.stage


def ensure_custom_role(role: CustomRole) -> str:
    """
    프로젝트 커스텀 역할을 생성하거나, 권한 목록이 다르면 갱신한다.
    삭제된(soft-delete) 역할은 복구 후 갱신한다.

    Returns:
        "created" | "updated" | "exists"
    """
    logger.info("커스텀 역할 확인: %s", role.name)
    current = describe_custom_role(role)

    if current is None:
        run_gcloud(
            ["iam", "roles", "create", role.role_id, *_role_args(role)],
            project=role.project_id,
        )
        logger.info("커스텀 역할을 생성했습니다: %s", role.name)
        return "created"

    if current.get("deleted"):
        logger.warning("삭제된 커스텀 역할을 복구합니다: %s", role.name)
        run_gcloud(["iam", "roles", "undelete", role.role_id], project=role.project_id)
    elif not role_differs(role, current):
        logger.info("커스텀 역할이 이미 원하는 상태입니다: %s", role.name)
        return "exists"

    run_gcloud(
        ["iam", "roles", "update", role.role_id, *_role_args(role)],
        project=role.project_id,
    )
    logger.info("커스텀 역할을 갱신했습니다: %s", role.name)
    return "updated"


def check_custom_role(role: CustomRole) -> str:
    try:
        current = describe_custom_role(role)
    except GcloudError as e:
        return f"Custom role: 조회 실패 ({role.name}, exit={e.returncode})"
    if current is None:
        return f"Custom role: 없음 (생성이 필요함) ({role.name})"
    if current.get("deleted"):
        return f"Custom role: 삭제됨 (복구가 필요함) ({role.name})"
    if role_differs(role, current):
        return f"Custom role: 권한 불일치 (갱신이 필요함) ({role.name})"
    return f"Custom role: 존재함 ({role.name})"


def get_role_permissions(role: CustomRole) -> Optional[list[str]]:
    current = describe_custom_role(role)
    if current is None or current.get("deleted"):
        return None
    return sorted(current.get("includedPermissions") or [])


# -----------------------------
# Bindings
# -----------------------------
def get_project_policy(project_id: str) -> Dict[str, Any]:
    policy = run_gcloud(["projects", "get-iam-policy", project_id], as_json=True)
    return policy or {}


def get_topic_policy(topic: str, project_id: str) -> Dict[str, Any]:
    policy = run_gcloud(
        ["pubsub", "topics", "get-iam-policy", topic],
        project=project_id,
        as_json=True,
    )
    return policy or {}


def _get_policy(binding: RoleBinding, project_id: str) -> Dict[str, Any]:
    if binding.scope == SCOPE_PROJECT:
        return get_project_policy(binding.resource)
    if binding.scope == SCOPE_TOPIC:
        return get_topic_policy(binding.resource, project_id)
    raise ValueError(f"알 수 없는 바인딩 scope 입니다: {binding.scope!r}")


def policy_has_binding(policy: Dict[str, Any], role: str, member: str) -> bool:
    for entry in policy.get("bindings") or []:
        # 조건부 바인딩은 무조건 부여와 같지 않으므로 제외
        if entry.get("condition"):
            continue
        if entry.get("role") == role and member in (entry.get("members") or []):
            return True
    return False


def ensure_binding(binding: RoleBinding, *, project_id: str) -> str:
    """
    바인딩이 정책에 없을 때만 추가한다.

    Returns:
        "added" | "exists"
    """
    policy = _get_policy(binding, project_id)
    if policy_has_binding(policy, binding.role, binding.member):
        logger.info("이미 부여된 역할입니다: %s", binding.describe())
        return "exists"

    if binding.scope == SCOPE_PROJECT:
        run_gcloud(
            [
                "projects",
                "add-iam-policy-binding",
                binding.resource,
                f"--member={binding.member}",
                f"--role={binding.role}",
                "--condition=None",
            ],
        )
    else:
        run_gcloud(
            [
                "pubsub",
                "topics",
                "add-iam-policy-binding",
                binding.resource,
                f"--member={binding.member}",
                f"--role={binding.role}",
            ],
            project=project_id,
        )

    logger.info("역할을 부여했습니다: %s", binding.describe())
    return "added"


def check_binding(binding: RoleBinding, *, project_id: str) -> str:
    try:
        policy = _get_policy(binding, project_id)
    except GcloudError as e:
        # 토픽이 아직 없으면 apply 가 토픽 생성 후 부여한다
        if binding.scope == SCOPE_TOPIC and e.not_found:
            return f"Binding: 토픽 없음 (토픽 생성 후 부여가 필요함) ({binding.describe()})"
        return f"Binding: 정책 조회 실패 ({binding.describe()}, exit={e.returncode})"
    if policy_has_binding(policy, binding.role, binding.member):
        return f"Binding: 부여됨 ({binding.describe()})"
    return f"Binding: 없음 (부여가 필요함) ({binding.describe()})"
