import pytest

from kpi_ai.orchestrator.manager import ServiceOrchestrator
from kpi_ai.services.anomaly_detector import (
    AnomalyDetector,
    BehaviorMetrics,
    EvidenceFile,
    auto_actions,
    behavior_checks,
    evidence_checks,
    peer_comparison,
    statistical_analysis,
)


def _submission(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "kpiId": "kpi-1",
        "userId": "user-1",
        "actualValue": 400,
        "target": 100,
        "historicalData": [{"percentage": 100.0} for _ in range(10)],
        "peerData": [],
    }
    payload.update(overrides)
    return payload


def test_statistical_analysis_flags_clear_outlier() -> None:
    analysis = statistical_analysis([100.0] * 10, 400.0)

    assert analysis.z_score > 3
    assert analysis.median == 100.0
    assert analysis.iqr == 0.0
    assert analysis.percentile == 100.0
    assert analysis.outlier_methods == ["Z-Score (3 sigma)", "IQR Method", "Grubbs Test"]


def test_statistical_analysis_accepts_ordinary_value() -> None:
    analysis = statistical_analysis([90.0, 95.0, 100.0, 105.0, 110.0], 101.0)

    assert analysis.is_outlier is False
    assert analysis.mean == pytest.approx(100.1666, rel=1e-3)


def test_peer_comparison_deviation_and_unique_performance() -> None:
    result = peer_comparison([100.0] * 5, 250.0)

    assert [item.category for item in result.findings] == ["Peer Comparison", "Unique Performance"]
    assert result.findings[0].impact == "high"
    assert result.risk == 45
    assert result.severity == "high"


def test_behavior_checks_accumulate_risk() -> None:
    metrics = BehaviorMetrics.model_validate(
        {
            "submissionTime": "2024-03-01T02:30:00Z",
            "editCount": 25,
            "timeSpentMinutes": 1,
            "previousSubmissions": 4,
        }
    )

    result = behavior_checks(metrics)

    assert len(result.findings) == 4
    assert result.risk == 40
    assert result.severity == "medium"


def test_evidence_checks() -> None:
    missing = evidence_checks([])
    files = [
        EvidenceFile(file_name="proof.pdf", file_size=500, uploaded_at="2024-03-01T10:00:00.100Z"),
        EvidenceFile(file_name="proof.pdf", file_size=5000, uploaded_at="2024-03-01T10:00:00.400Z"),
    ]
    suspicious = evidence_checks(files)

    assert missing.risk == 30
    assert missing.severity == "high"
    assert [item.category for item in suspicious.findings] == [
        "Suspicious File Size",
        "Duplicate Evidence",
        "Bulk Upload",
    ]
    assert suspicious.risk == 25


def test_auto_actions_thresholds() -> None:
    assert auto_actions(85, "low", "none")[0] == "FLAG_FOR_IMMEDIATE_REVIEW"
    assert auto_actions(10, "high", "statistical") == [
        "FLAG_FOR_REVIEW",
        "NOTIFY_APPROVER",
        "REQUEST_ADDITIONAL_EVIDENCE",
        "VERIFY_DATA_SOURCE",
    ]
    assert auto_actions(45, "low", "evidence") == [
        "ADD_TO_WATCH_LIST",
        "SUGGEST_APPROVER_REVIEW",
        "REQUEST_EVIDENCE_CLARIFICATION",
    ]
    assert auto_actions(0, "low", "none") == []


@pytest.mark.asyncio
async def test_submission_without_model_analysis() -> None:
    detector = AnomalyDetector(orchestrator=None, use_model=False)

    result = await detector.analyze_kpi_submission(_submission())

    assert result["anomaly_type"] == "statistical"
    assert result["severity"] == "high"
    assert result["risk_score"] == 40
    assert result["needs_human_review"] is True
    assert "VERIFY_DATA_SOURCE" in result["auto_actions"]
    assert result["confidence"] == pytest.approx(0.7)
    assert result["recommendations"][0] == "Verify calculation methodology and data sources"


@pytest.mark.asyncio
async def test_clean_submission_reports_no_anomaly() -> None:
    detector = AnomalyDetector(orchestrator=None, use_model=False)

    result = await detector.analyze_kpi_submission(
        _submission(actualValue=100, historicalData=[{"percentage": 100.0}] * 2)
    )

    assert result["anomaly_type"] == "none"
    assert result["risk_score"] == 0
    assert result["confidence"] == 1.0
    assert result["needs_human_review"] is False
    assert result["recommendations"] == ["No anomalies detected - proceed with standard approval"]


@pytest.mark.asyncio
async def test_model_findings_add_capped_risk(make_settings, fake_backend) -> None:
    fake_backend.reply = {
        "additionalRisks": [
            {"category": "Gaming", "finding": "Sudden jump", "evidence": "n/a", "impact": "high"}
        ],
        "riskContribution": 50,
    }
    async with ServiceOrchestrator(make_settings(), backend=fake_backend) as orchestrator:
        response = await orchestrator.call_service(
            "anomaly-detector", "analyzeKpiSubmission", _submission()
        )

    assert response.success is True
    assert response.data["risk_score"] == 60
    assert response.data["detailed_findings"][-1]["category"] == "Gaming"
    assert response.data["needs_human_review"] is True
