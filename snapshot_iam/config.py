from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, List

from dotenv import load_dotenv


ENV_FILES_DEFAULT_ORDER = [".env", ".env.infra"]

DEFAULT_FETCHER_SA_ID = "bq-snapshot-fetcher-sa"
DEFAULT_CREATOR_SA_ID = "bq-snapshot-creator-sa"
DEFAULT_CREATOR_ROLE_ID = "bigquery_snapshot_creator"


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y"}


@dataclass
class SnapshotIamConfig:
    # 필수 공통
    gcp_project_id: str
    gcp_region: str
    snapshot_topic_name: str

    # 리소스 ID
    fetcher_sa_id: str = DEFAULT_FETCHER_SA_ID
    creator_sa_id: str = DEFAULT_CREATOR_SA_ID
    creator_role_id: str = DEFAULT_CREATOR_ROLE_ID

    # 스냅샷이 생성될 데이터셋
    target_dataset_id: Optional[str] = None

    # 토글
    enable_apis: bool = True
    ensure_topic: bool = True
    ensure_target_dataset: bool = False
    topic_scoped_publisher: bool = True

    @classmethod
    def from_env(cls) -> "SnapshotIamConfig":
        # 필수값
        missing: List[str] = []
        def req(name: str) -> str:
            val = os.getenv(name)
            if not val:
                missing.append(name)
            return val or ""

        cfg = cls(
            gcp_project_id=req("GCP_PROJECT_ID"),
            gcp_region=req("GCP_REGION"),
            snapshot_topic_name=req("SNAPSHOT_TOPIC_NAME"),
            fetcher_sa_id=os.getenv("FETCHER_SA_ID") or DEFAULT_FETCHER_SA_ID,
            creator_sa_id=os.getenv("CREATOR_SA_ID") or DEFAULT_CREATOR_SA_ID,
            creator_role_id=os.getenv("CREATOR_ROLE_ID") or DEFAULT_CREATOR_ROLE_ID,
            target_dataset_id=os.getenv("TARGET_DATASET_ID") or None,
            enable_apis=_get_bool("ENABLE_APIS", True),
            ensure_topic=_get_bool("ENSURE_TOPIC", True),
            ensure_target_dataset=_get_bool("ENSURE_TARGET_DATASET", False),
            topic_scoped_publisher=_get_bool("TOPIC_SCOPED_PUBLISHER", True),
        )

        if missing:
            raise ValueError(
                "필수 환경변수가 누락되었습니다: " + ", ".join(sorted(set(missing)))
            )

        if cfg.ensure_target_dataset and not cfg.target_dataset_id:
            raise ValueError(
                "ENSURE_TARGET_DATASET=true 이면 TARGET_DATASET_ID 환경변수가 필요합니다."
            )

        return cfg
