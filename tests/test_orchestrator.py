from dataclasses import replace

import pytest

from snapshot_iam.config import SnapshotIamConfig
from snapshot_iam import orchestrator
from snapshot_iam.gcloud import GcloudError


def _minimal_cfg() -> SnapshotIamConfig:
    return SnapshotIamConfig(
        gcp_project_id="test-project",
        gcp_region="us-central1",
        snapshot_topic_name="bq-snapshot-tables",
    )


@pytest.fixture()
def calls(monkeypatch: pytest.MonkeyPatch) -> list:
    recorded: list = []

    monkeypatch.setattr(orchestrator.gcp_project, "ensure_apis", lambda cfg: recorded.append("apis"))  # type: ignore[arg-type]
    monkeypatch.setattr(orchestrator.gcp_pubsub, "ensure_topic", lambda cfg: recorded.append("topic"))  # type: ignore[arg-type]
    monkeypatch.setattr(orchestrator.gcp_bq, "ensure_target_dataset", lambda cfg: recorded.append("dataset"))  # type: ignore[arg-type]
    monkeypatch.setattr(
        orchestrator.gcp_iam,
        "ensure_service_account",
        lambda sa: recorded.append(("sa", sa.account_id)) or "created",
    )
    monkeypatch.setattr(
        orchestrator.gcp_iam,
        "ensure_custom_role",
        lambda role: recorded.append(("role", role.role_id)) or "created",
    )
    monkeypatch.setattr(
        orchestrator.gcp_iam,
        "ensure_binding",
        lambda b, project_id: recorded.append(("binding", b.role)) or "added",
    )
    return recorded


def test_plan_all_makes_no_calls(calls: list) -> None:
    report = orchestrator.plan_all(_minimal_cfg())

    assert calls == []
    assert "bq-snapshot-fetcher-sa@test-project.iam.gserviceaccount.com" in report
    assert "- dataset: SKIPPED" in report
    assert "- bindings: ENABLED" in report


def test_apply_all_runs_sections_in_dependency_order(calls: list) -> None:
    summary, has_failures = orchestrator.apply_all(_minimal_cfg())

    assert not has_failures
    assert calls[0] == "apis"
    assert calls[1] == "topic"
    first_binding = next(i for i, c in enumerate(calls) if isinstance(c, tuple) and c[0] == "binding")
    last_sa = max(i for i, c in enumerate(calls) if isinstance(c, tuple) and c[0] == "sa")
    role_idx = next(i for i, c in enumerate(calls) if isinstance(c, tuple) and c[0] == "role")
    assert last_sa < role_idx < first_binding
    assert "## Outputs" in summary
    assert "creator_service_account_email" in summary


def test_apply_all_only_sections(calls: list) -> None:
    summary, has_failures = orchestrator.apply_all(_minimal_cfg(), only_sections=["accounts"])

    assert not has_failures
    assert {c[0] for c in calls} == {"sa"}
    assert "- bindings" in summary.split("## Skipped sections")[1]


def test_apply_all_marks_failed_section_and_blocks_bindings(
    calls: list, monkeypatch: pytest.MonkeyPatch
) -> None:
    def failing_role(_role) -> str:  # noqa: ANN001
        raise RuntimeError("boom")

    monkeypatch.setattr(orchestrator.gcp_iam, "ensure_custom_role", failing_role)

    summary, has_failures = orchestrator.apply_all(_minimal_cfg())

    assert has_failures
    assert not [c for c in calls if isinstance(c, tuple) and c[0] == "binding"]
    failed_part = summary.split("## Failed sections")[1].split("## Blocked sections")[0]
    blocked_part = summary.split("## Blocked sections")[1].split("## Changes")[0]
    assert "- role" in failed_part
    assert "- bindings" in blocked_part
    assert "## Outputs" not in summary


def test_topic_failure_does_not_block_project_scoped_bindings(
    calls: list, monkeypatch: pytest.MonkeyPatch
) -> None:
    def failing_topic(_cfg) -> None:  # noqa: ANN001
        raise RuntimeError("topic boom")

    monkeypatch.setattr(orchestrator.gcp_pubsub, "ensure_topic", failing_topic)
    cfg = replace(_minimal_cfg(), topic_scoped_publisher=False)

    summary, has_failures = orchestrator.apply_all(cfg)

    assert has_failures
    assert [c for c in calls if isinstance(c, tuple) and c[0] == "binding"]


def test_check_all_classifies_missing_resources_as_warnings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(orchestrator.gcp_project, "check_apis", lambda cfg: ["API: 활성화됨 (iam.googleapis.com)"])
    monkeypatch.setattr(orchestrator.gcp_pubsub, "check_topic", lambda cfg: "Pub/Sub: 토픽 존재함 (t)")
    monkeypatch.setattr(orchestrator.gcp_bq, "check_target_dataset", lambda cfg: "BigQuery: TARGET_DATASET_ID 미설정 (체크 건너뜀)")
    monkeypatch.setattr(
        orchestrator.gcp_iam,
        "check_service_account",
        lambda sa: f"Service account: 없음 (생성이 필요함) ({sa.email})",
    )
    monkeypatch.setattr(orchestrator.gcp_iam, "check_custom_role", lambda role: f"Custom role: 존재함 ({role.name})")
    monkeypatch.setattr(
        orchestrator.gcp_iam,
        "check_binding",
        lambda b, project_id: f"Binding: 부여됨 ({b.describe()})",
    )

    report, has_issues = orchestrator.check_all(_minimal_cfg())

    assert has_issues
    assert "경고만 있습니다" in report
    assert "Critical issues" not in report


def test_check_all_exception_is_critical(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(cfg) -> list:  # noqa: ANN001
        raise RuntimeError("gcloud down")

    monkeypatch.setattr(orchestrator.gcp_project, "check_apis", boom)
    monkeypatch.setattr(orchestrator.gcp_pubsub, "check_topic", lambda cfg: "Pub/Sub: 토픽 존재함 (t)")
    monkeypatch.setattr(orchestrator.gcp_bq, "check_target_dataset", lambda cfg: "BigQuery: TARGET_DATASET_ID 미설정 (체크 건너뜀)")
    monkeypatch.setattr(orchestrator.gcp_iam, "check_service_account", lambda sa: f"Service account: 존재함 ({sa.email})")
    monkeypatch.setattr(orchestrator.gcp_iam, "check_custom_role", lambda role: f"Custom role: 존재함 ({role.name})")
    monkeypatch.setattr(orchestrator.gcp_iam, "check_binding", lambda b, project_id: f"Binding: 부여됨 ({b.describe()})")

    report, has_issues = orchestrator.check_all(_minimal_cfg())

    assert has_issues
    assert "APIs: 체크 중 예외 발생: gcloud down" in report


def test_audit_all_flags_excess_role(monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = _minimal_cfg()
    outputs = orchestrator.outputs(cfg)
    creator = "serviceAccount:" + outputs["creator_service_account_email"]
    fetcher = "serviceAccount:" + outputs["fetcher_service_account_email"]
    policy = {
        "bindings": [
            {"role": "roles/bigquery.metadataViewer", "members": [fetcher]},
            {"role": "roles/bigquery.jobUser", "members": [creator]},
            {"role": "projects/test-project/roles/bigquery_snapshot_creator", "members": [creator]},
            {"role": "roles/bigquery.dataOwner", "members": [creator]},
        ]
    }
    monkeypatch.setattr(orchestrator.gcp_iam, "get_project_policy", lambda project_id: policy)
    monkeypatch.setattr(
        orchestrator.gcp_iam,
        "get_topic_policy",
        lambda topic, project_id: {"bindings": [{"role": "roles/pubsub.publisher", "members": [fetcher]}]},
    )
    monkeypatch.setattr(
        orchestrator.gcp_iam,
        "get_role_permissions",
        lambda role: list(role.permissions),
    )

    report, has_violations = orchestrator.audit_all(cfg)

    assert has_violations
    assert "[EXCESS]" in report
    assert "roles/bigquery.dataOwner" in report


def test_check_all_fresh_project_has_only_warnings(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_gcloud(args, *, project=None, as_json=False, timeout=300.0):  # noqa: ANN001, ARG001
        if list(args[:2]) == ["projects", "get-iam-policy"]:
            return {"bindings": []}
        raise GcloudError("missing", returncode=1, stderr="NOT_FOUND: Resource not found")

    monkeypatch.setattr(orchestrator.gcp_iam, "run_gcloud", fake_gcloud)
    monkeypatch.setattr(orchestrator.gcp_project, "check_apis", lambda cfg: ["API: 활성화됨 (iam.googleapis.com)"])
    monkeypatch.setattr(orchestrator.gcp_pubsub, "check_topic", lambda cfg: "Pub/Sub: 토픽 없음 (생성이 필요함) (bq-snapshot-tables)")
    monkeypatch.setattr(orchestrator.gcp_bq, "check_target_dataset", lambda cfg: "BigQuery: TARGET_DATASET_ID 미설정 (체크 건너뜀)")

    report, has_issues = orchestrator.check_all(_minimal_cfg(), show_all=True)

    assert has_issues
    assert "크리티컬" not in report
    assert "경고만 있습니다" in report
    assert "Binding: 토픽 없음 (토픽 생성 후 부여가 필요함) (topic:bq-snapshot-tables" in report


def _compliant_project_policy(cfg: SnapshotIamConfig) -> tuple[dict, str, str]:
    outputs = orchestrator.outputs(cfg)
    creator = "serviceAccount:" + outputs["creator_service_account_email"]
    fetcher = "serviceAccount:" + outputs["fetcher_service_account_email"]
    policy = {
        "bindings": [
            {"role": "roles/bigquery.metadataViewer", "members": [fetcher]},
            {"role": "roles/bigquery.jobUser", "members": [creator]},
            {"role": "projects/test-project/roles/bigquery_snapshot_creator", "members": [creator]},
        ]
    }
    return policy, fetcher, creator


def test_audit_all_checks_topic_policy(monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = _minimal_cfg()
    policy, _fetcher, creator = _compliant_project_policy(cfg)
    topics: list = []

    def fake_topic_policy(topic: str, project_id: str) -> dict:
        topics.append((topic, project_id))
        return {"bindings": [{"role": "roles/pubsub.admin", "members": [creator]}]}

    monkeypatch.setattr(orchestrator.gcp_iam, "get_project_policy", lambda project_id: policy)
    monkeypatch.setattr(orchestrator.gcp_iam, "get_topic_policy", fake_topic_policy)
    monkeypatch.setattr(orchestrator.gcp_iam, "get_role_permissions", lambda role: list(role.permissions))

    report, has_violations = orchestrator.audit_all(cfg)

    assert has_violations
    assert topics == [("bq-snapshot-tables", "test-project")]
    assert "[MISSING] bq-snapshot-fetcher-sa@test-project.iam.gserviceaccount.com (topic:bq-snapshot-tables): roles/pubsub.publisher" in report
    assert "[EXCESS] bq-snapshot-creator-sa@test-project.iam.gserviceaccount.com (topic:bq-snapshot-tables): roles/pubsub.admin" in report


def test_audit_all_missing_topic_reports_missing_publisher(monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = _minimal_cfg()
    policy, _fetcher, _creator = _compliant_project_policy(cfg)

    def missing_topic(topic: str, project_id: str) -> dict:  # noqa: ARG001
        raise GcloudError("missing", returncode=1, stderr="NOT_FOUND: Resource not found")

    monkeypatch.setattr(orchestrator.gcp_iam, "get_project_policy", lambda project_id: policy)
    monkeypatch.setattr(orchestrator.gcp_iam, "get_topic_policy", missing_topic)
    monkeypatch.setattr(orchestrator.gcp_iam, "get_role_permissions", lambda role: list(role.permissions))

    report, has_violations = orchestrator.audit_all(cfg)

    assert has_violations
    assert "roles/pubsub.publisher" in report.split("### MISSING")[1]


def test_audit_all_skips_topic_policy_when_project_scoped(monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = replace(_minimal_cfg(), topic_scoped_publisher=False)
    policy, fetcher, _creator = _compliant_project_policy(cfg)
    policy["bindings"].append({"role": "roles/pubsub.publisher", "members": [fetcher]})

    def unexpected(topic: str, project_id: str) -> dict:  # noqa: ARG001
        raise AssertionError("topic policy should not be read")

    monkeypatch.setattr(orchestrator.gcp_iam, "get_project_policy", lambda project_id: policy)
    monkeypatch.setattr(orchestrator.gcp_iam, "get_topic_policy", unexpected)
    monkeypatch.setattr(orchestrator.gcp_iam, "get_role_permissions", lambda role: list(role.permissions))

    report, has_violations = orchestrator.audit_all(cfg)

    assert not has_violations, report
