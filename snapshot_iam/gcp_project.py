"""
gcp_project
-----------

스냅샷 파이프라인 IAM 구성에 필요한 API enable 을 담당하는 모듈.
"""

from __future__ import annotations

from typing import List

from .config import SnapshotIamConfig
from .gcloud import GcloudError, run_gcloud
from .logging_utils import get_logger


logger = get_logger(__name__)


REQUIRED_APIS_BASE = [
    "iam.googleapis.com",
    "cloudresourcemanager.googleapis.com",
    "bigquery.googleapis.com",
    "pubsub.googleapis.com",
]


def required_apis(cfg: SnapshotIamConfig) -> List[str]:
    # 현재는 설정과 무관하게 고정이지만, 섹션이 늘어날 때 여기서 분기한다.
    return sorted(set(REQUIRED_APIS_BASE))


def ensure_apis(cfg: SnapshotIamConfig) -> None:
    """
    필요한 API 들이 enable 되어 있는지 확인/enable 한다.
    """
    if not cfg.enable_apis:
        logger.debug("ENABLE_APIS=false 로 설정되어 API 활성화를 건너뜁니다.")
        return

    apis = required_apis(cfg)
    logger.info("다음 API 들이 활성화되어 있어야 합니다: %s", apis)
    run_gcloud(["services", "enable", *apis], project=cfg.gcp_project_id)


def list_enabled_apis(project_id: str) -> set[str]:
    services = run_gcloud(
        ["services", "list", "--enabled"],
        project=project_id,
        as_json=True,
    ) or []
    enabled: set[str] = set()
    for svc in services:
        name = (svc.get("config") or {}).get("name") or svc.get("name", "").rsplit("/", 1)[-1]
        if name:
            enabled.add(name)
    return enabled


def check_apis(cfg: SnapshotIamConfig) -> List[str]:
    """
    필수 API 가 이미 활성화되어 있는지 확인한다.
    실제 enable 은 수행하지 않는다.
    """
    try:
        enabled = list_enabled_apis(cfg.gcp_project_id)
    except GcloudError as e:
        if e.not_found:
            return [f"Project: 없음 ({cfg.gcp_project_id})"]
        return [f"APIs: 조회 실패 ({e})"]

    results: List[str] = []
    for api in required_apis(cfg):
        if api in enabled:
            results.append(f"API: 활성화됨 ({api})")
        else:
            results.append(f"API: 비활성화 (enable 필요) ({api})")
    return results
