"""
gcp_pubsub
----------

fetcher 가 스냅샷 대상 테이블을 발행하는 Pub/Sub 토픽을 준비하는 모듈.
"""

from __future__ import annotations

from .config import SnapshotIamConfig
from .gcloud import GcloudError, run_gcloud
from .logging_utils import get_logger


logger = get_logger(__name__)


def _topic_exists(cfg: SnapshotIamConfig) -> bool:
    try:
        run_gcloud(
            ["pubsub", "topics", "describe", cfg.snapshot_topic_name],
            project=cfg.gcp_project_id,
            as_json=True,
        )
        return True
    except GcloudError as e:
        if e.not_found:
            return False
        raise


def ensure_topic(cfg: SnapshotIamConfig) -> None:
    """
    토픽이 존재하는지 확인하고, 없으면 생성한다.
    """
    if not cfg.ensure_topic:
        logger.debug("ENSURE_TOPIC=false 로 설정되어 토픽 생성을 건너뜁니다.")
        return

    topic = cfg.snapshot_topic_name
    logger.info("Pub/Sub 토픽 확인: %s", topic)
    if _topic_exists(cfg):
        logger.info("기존 Pub/Sub 토픽을 사용합니다: %s", topic)
        return

    run_gcloud(["pubsub", "topics", "create", topic], project=cfg.gcp_project_id)
    logger.info("Pub/Sub 토픽을 생성했습니다: %s", topic)


def check_topic(cfg: SnapshotIamConfig) -> str:
    topic = cfg.snapshot_topic_name
    try:
        exists = _topic_exists(cfg)
    except GcloudError as e:
        return f"Pub/Sub: 토픽 조회 실패 ({topic}, exit={e.returncode})"
    if exists:
        return f"Pub/Sub: 토픽 존재함 ({topic})"
    return f"Pub/Sub: 토픽 없음 (생성이 필요함) ({topic})"
