"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 snapshot_iam 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.
"""

from __future__ import annotations

import os
import sys
from typing import Iterator

import pytest


_CONFIG_ENV_KEYS = (
    "GCP_PROJECT_ID",
    "GCP_REGION",
    "SNAPSHOT_TOPIC_NAME",
    "FETCHER_SA_ID",
    "CREATOR_SA_ID",
    "CREATOR_ROLE_ID",
    "TARGET_DATASET_ID",
    "ENABLE_APIS",
    "ENSURE_TOPIC",
    "ENSURE_TARGET_DATASET",
    "TOPIC_SCOPED_PUBLISHER",
)


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    # 개발자 셸에 남은 값이 테스트에 섞이지 않도록
    for key in _CONFIG_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield
    # load_dotenv 는 os.environ 을 직접 바꾸므로 monkeypatch 가 되돌리지 못한다
    for key in _CONFIG_ENV_KEYS:
        os.environ.pop(key, None)
