"""
snapshot_iam
------------

BigQuery 테이블 스냅샷 파이프라인용 IAM 리소스 CLI 패키지.
fetcher / creator 서비스 계정, 스냅샷 생성용 커스텀 역할, 역할 바인딩을
환경변수 기반으로 선언하고 gcloud 로 적용/점검하는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "iam_resources",
    "orchestrator",
]
