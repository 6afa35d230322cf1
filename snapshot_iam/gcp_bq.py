"""
gcp_bq
------

스냅샷이 저장될 BigQuery 데이터셋을 담당하는 모듈.
"""

from __future__ import annotations

from google.api_core.exceptions import NotFound
from google.cloud import bigquery

from .config import SnapshotIamConfig
from .logging_utils import get_logger


logger = get_logger(__name__)


def _full_dataset_id(cfg: SnapshotIamConfig) -> str:
    return f"{cfg.gcp_project_id}.{cfg.target_dataset_id}"


def ensure_target_dataset(cfg: SnapshotIamConfig) -> None:
    """
    스냅샷 대상 데이터셋 존재 여부를 확인하고, 필요 시 생성한다.
    """
    if not cfg.ensure_target_dataset:
        logger.debug("ENSURE_TARGET_DATASET=false 로 설정되어 데이터셋 설정을 건너뜁니다.")
        return

    if not cfg.target_dataset_id:
        raise ValueError(
            "ENSURE_TARGET_DATASET=true 이면 TARGET_DATASET_ID 환경변수가 필요합니다."
        )

    full_dataset_id = _full_dataset_id(cfg)
    logger.info("스냅샷 데이터셋 확인: %s", full_dataset_id)

    client = bigquery.Client(project=cfg.gcp_project_id)

    try:
        client.get_dataset(full_dataset_id)
        logger.info("기존 BigQuery 데이터셋을 사용합니다: %s", full_dataset_id)
    except NotFound:
        dataset = bigquery.Dataset(full_dataset_id)
        dataset.location = cfg.gcp_region
        dataset.description = "BigQuery 테이블 스냅샷 저장용"
        client.create_dataset(dataset, exists_ok=True)
        logger.info("BigQuery 데이터셋을 생성했습니다: %s", full_dataset_id)


def check_target_dataset(cfg: SnapshotIamConfig) -> str:
    """
    데이터셋 존재 여부를 확인만 하고, 생성하지 않는다.
    """
    if not cfg.target_dataset_id:
        return "BigQuery: TARGET_DATASET_ID 미설정 (체크 건너뜀)"

    full_dataset_id = _full_dataset_id(cfg)
    client = bigquery.Client(project=cfg.gcp_project_id)

    try:
        client.get_dataset(full_dataset_id)
        return f"BigQuery: 데이터셋 존재함 ({full_dataset_id})"
    except NotFound:
        return f"BigQuery: 데이터셋 없음 (생성이 필요함) ({full_dataset_id})"
