"""Statistical, peer, behavioral and evidence anomaly checks for KPI submissions."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from math import sqrt
from typing import Any, Literal

from pydantic import Field

from kpi_ai.services.base import OrchestratedService, ServiceInput

logger = logging.getLogger(__name__)

Impact = Literal["low", "medium", "high"]
Severity = Literal["low", "medium", "high", "critical"]

_SEVERITY_RANK = {"low": 1, "medium": 2, "high": 3, "critical": 4}

MIN_HISTORY = 3
MIN_PEERS = 3
GRUBBS_MIN_SAMPLES = 7
GRUBBS_CRITICAL = 2.5
Z_THRESHOLD = 3.0


class HistoricalPoint(ServiceInput):
    cycle_id: str = ""
    year: int | None = None
    quarter: int | None = None
    actual_value: float = 0.0
    target: float = 0.0
    percentage: float
    score: float = 0.0


class PeerPoint(ServiceInput):
    user_id: str = ""
    department: str = ""
    job_title: str = ""
    actual_value: float = 0.0
    target: float = 0.0
    percentage: float


class EvidenceFile(ServiceInput):
    id: str = ""
    file_name: str
    file_size: int
    file_type: str = ""
    uploaded_at: str


class BehaviorMetrics(ServiceInput):
    submission_time: str
    edit_count: int = 0
    time_spent_minutes: float = 0.0
    device_info: str = ""
    ip_address: str = ""
    previous_submissions: int = 0


class AnomalyInput(ServiceInput):
    kpi_id: str
    user_id: str
    actual_value: float
    target: float
    type: str = ""
    submitted_at: str = ""
    historical_data: list[HistoricalPoint] = Field(default_factory=list)
    peer_data: list[PeerPoint] = Field(default_factory=list)
    evidence: list[EvidenceFile] | None = None
    behavior_metrics: BehaviorMetrics | None = None

    @property
    def achievement(self) -> float:
        return achievement_percentage(self.actual_value, self.target)


@dataclass(slots=True)
class Finding:
    category: str
    finding: str
    evidence: str
    impact: Impact


@dataclass(slots=True)
class StatisticalAnalysis:
    mean: float
    median: float
    std_dev: float
    z_score: float
    iqr: float
    q1: float
    q3: float
    percentile: float
    outlier_methods: list[str] = field(default_factory=list)

    @property
    def is_outlier(self) -> bool:
        return bool(self.outlier_methods)


@dataclass(slots=True)
class CheckResult:
    findings: list[Finding] = field(default_factory=list)
    risk: float = 0.0

    @property
    def severity(self) -> Severity:
        impacts = {item.impact for item in self.findings}
        if "high" in impacts:
            return "high"
        if "medium" in impacts:
            return "medium"
        return "low"


def achievement_percentage(actual: float, target: float) -> float:
    if target == 0:
        return 0.0
    return actual / target * 100


def escalate(current: Severity, new: Severity) -> Severity:
    return new if _SEVERITY_RANK[new] > _SEVERITY_RANK[current] else current


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def statistical_analysis(history: list[float], current: float) -> StatisticalAnalysis:
    """Outlier tests for `current` against `history` plus `current` itself.

    Uses population standard deviation, index-based quartiles and a
    simplified Grubbs test with a fixed critical value.
    """
    values = [*history, current]
    n = len(values)
    mean = sum(values) / n
    ordered = sorted(values)
    median = ordered[n // 2]
    std_dev = sqrt(sum((value - mean) ** 2 for value in values) / n)
    z_score = (current - mean) / std_dev if std_dev > 0 else 0.0

    q1 = ordered[int(n * 0.25)]
    q3 = ordered[int(n * 0.75)]
    iqr = q3 - q1

    methods: list[str] = []
    if abs(z_score) > Z_THRESHOLD:
        methods.append("Z-Score (3 sigma)")
    if current < q1 - 1.5 * iqr or current > q3 + 1.5 * iqr:
        methods.append("IQR Method")
    if n >= GRUBBS_MIN_SAMPLES and std_dev > 0:
        max_deviation = max(abs(value - mean) for value in values)
        if max_deviation / std_dev > GRUBBS_CRITICAL and abs(current - mean) == max_deviation:
            methods.append("Grubbs Test")

    percentile = sum(1 for value in ordered if value <= current) / n * 100
    return StatisticalAnalysis(
        mean=mean,
        median=median,
        std_dev=std_dev,
        z_score=z_score,
        iqr=iqr,
        q1=q1,
        q3=q3,
        percentile=percentile,
        outlier_methods=methods,
    )


def statistical_findings(analysis: StatisticalAnalysis, current: float) -> list[Finding]:
    findings: list[Finding] = []
    if abs(analysis.z_score) > Z_THRESHOLD:
        findings.append(
            Finding(
                category="Statistical Anomaly",
                finding=(
                    f"Actual value is {abs(analysis.z_score):.2f} standard deviations "
                    "from historical mean"
                ),
                evidence=(
                    f"Z-Score: {analysis.z_score:.2f}, Mean: {analysis.mean:.1f}%, "
                    f"StdDev: {analysis.std_dev:.1f}%"
                ),
                impact="high" if abs(analysis.z_score) > 4 else "medium",
            )
        )
    if analysis.percentile > 95 or analysis.percentile < 5:
        direction = "high" if analysis.percentile > 50 else "low"
        findings.append(
            Finding(
                category="Extreme Performance",
                finding=(
                    f"Performance at {analysis.percentile:.1f}th percentile (extreme {direction})"
                ),
                evidence=(
                    f"Current: {current:.1f}%, Historical range: "
                    f"{analysis.q1:.1f}% - {analysis.q3:.1f}%"
                ),
                impact="medium",
            )
        )
    return findings


def peer_comparison(peers: list[float], current: float) -> CheckResult:
    result = CheckResult()
    peer_mean = sum(peers) / len(peers)
    deviation_pct = (current - peer_mean) / peer_mean * 100 if peer_mean else 0.0

    if abs(deviation_pct) > 50:
        verb = "exceeds" if deviation_pct > 0 else "falls below"
        result.findings.append(
            Finding(
                category="Peer Comparison",
                finding=f"Performance {verb} peer average by {abs(deviation_pct):.1f}%",
                evidence=f"Your performance: {current:.1f}%, Peer average: {peer_mean:.1f}%",
                impact="high" if abs(deviation_pct) > 100 else "medium",
            )
        )
        result.risk = min(abs(deviation_pct) / 2, 30)

    similar = sum(1 for value in peers if abs(value - current) < 10)
    if similar == 0 and len(peers) >= 5:
        result.findings.append(
            Finding(
                category="Unique Performance",
                finding="No peers achieved similar results",
                evidence=f"0 out of {len(peers)} peers within 10% range",
                impact="medium",
            )
        )
        result.risk += 15
    return result


def behavior_checks(metrics: BehaviorMetrics) -> CheckResult:
    result = CheckResult()
    submitted = _parse_timestamp(metrics.submission_time)
    if 0 <= submitted.hour < 6:
        result.findings.append(
            Finding(
                category="Suspicious Timing",
                finding="Submission made during unusual hours (12AM-6AM)",
                evidence=f"Submitted at {submitted.strftime('%H:%M:%S')}",
                impact="low",
            )
        )
        result.risk += 10
    if metrics.edit_count > 20:
        result.findings.append(
            Finding(
                category="Excessive Editing",
                finding=f"KPI was edited {metrics.edit_count} times before submission",
                evidence=f"Edit count: {metrics.edit_count} (average is 3-5)",
                impact="low",
            )
        )
        result.risk += 5
    if metrics.time_spent_minutes < 2:
        result.findings.append(
            Finding(
                category="Rushed Submission",
                finding="Very short time spent on submission",
                evidence=f"Time spent: {metrics.time_spent_minutes:g} minutes (expected: 10-30 min)",
                impact="medium",
            )
        )
        result.risk += 15
    if metrics.previous_submissions > 3:
        result.findings.append(
            Finding(
                category="Multiple Resubmissions",
                finding=f"This is submission attempt {metrics.previous_submissions + 1}",
                evidence=f"Previous submissions: {metrics.previous_submissions}",
                impact="medium",
            )
        )
        result.risk += 10
    return result


def evidence_checks(evidence: list[EvidenceFile]) -> CheckResult:
    result = CheckResult()
    if not evidence:
        result.findings.append(
            Finding(
                category="Missing Evidence",
                finding="No evidence files provided",
                evidence="Expected at least 1 evidence file",
                impact="high",
            )
        )
        result.risk += 30
        return result

    small = [item.file_name for item in evidence if item.file_size < 1000]
    if small:
        result.findings.append(
            Finding(
                category="Suspicious File Size",
                finding=f"{len(small)} file(s) are suspiciously small",
                evidence=f"Files under 1KB: {', '.join(small)}",
                impact="medium",
            )
        )
        result.risk += 15

    seen: set[str] = set()
    duplicates: list[str] = []
    for item in evidence:
        if item.file_name in seen and item.file_name not in duplicates:
            duplicates.append(item.file_name)
        seen.add(item.file_name)
    if duplicates:
        result.findings.append(
            Finding(
                category="Duplicate Evidence",
                finding="Duplicate file names detected",
                evidence=f"Duplicates: {', '.join(duplicates)}",
                impact="low",
            )
        )
        result.risk += 5

    if len(evidence) > 1:
        times = [_parse_timestamp(item.uploaded_at) for item in evidence]
        gaps = [(later - earlier).total_seconds() for earlier, later in zip(times, times[1:])]
        if all(gap < 1 for gap in gaps):
            result.findings.append(
                Finding(
                    category="Bulk Upload",
                    finding="All evidence files uploaded simultaneously",
                    evidence="All files uploaded within 1 second",
                    impact="low",
                )
            )
            result.risk += 5
    return result


def auto_actions(risk: float, severity: Severity, anomaly_type: str) -> list[str]:
    actions: list[str] = []
    if risk > 80 or severity == "critical":
        actions += ["FLAG_FOR_IMMEDIATE_REVIEW", "NOTIFY_ADMIN", "BLOCK_AUTO_APPROVAL"]
    elif risk > 60 or severity == "high":
        actions += ["FLAG_FOR_REVIEW", "NOTIFY_APPROVER", "REQUEST_ADDITIONAL_EVIDENCE"]
    elif risk > 40 or severity == "medium":
        actions += ["ADD_TO_WATCH_LIST", "SUGGEST_APPROVER_REVIEW"]
    if anomaly_type == "statistical":
        actions.append("VERIFY_DATA_SOURCE")
    if anomaly_type == "evidence":
        actions.append("REQUEST_EVIDENCE_CLARIFICATION")
    return actions


def confidence(findings: list[Finding]) -> float:
    if not findings:
        return 1.0
    high = sum(1 for item in findings if item.impact == "high")
    medium = sum(1 for item in findings if item.impact == "medium")
    return min(0.5 + high * 0.2 + medium * 0.1, 0.95)


def recommendations(findings: list[Finding]) -> list[str]:
    categories = [item.category for item in findings]
    result: list[str] = []
    if any("Statistical" in category for category in categories):
        result += [
            "Verify calculation methodology and data sources",
            "Compare against original source systems (ERP, CRM, etc.)",
        ]
    if any("Peer" in category for category in categories):
        result += [
            "Interview employee about exceptional performance factors",
            "Check if special circumstances or one-time events occurred",
        ]
    if any("Evidence" in category for category in categories):
        result += [
            "Request additional or higher quality evidence",
            "Verify evidence authenticity through source verification",
        ]
    if any("Behavioral" in category or "Timing" in category for category in categories):
        result += [
            "Conduct behavioral interview with submitter",
            "Review submission process and timeline",
        ]
    if not findings:
        result.append("No anomalies detected - proceed with standard approval")
    return result


def describe(findings: list[Finding], risk: float, anomaly_type: str) -> str:
    if not findings:
        return (
            "No anomalies detected. Performance appears normal based on statistical "
            "analysis, peer comparison, and behavioral patterns."
        )
    noun = "anomaly" if len(findings) == 1 else "anomalies"
    parts = [f"Detected {len(findings)} potential {noun} (Risk Score: {round(risk)}/100)."]
    high = [item.finding for item in findings if item.impact == "high"]
    medium = [item.finding for item in findings if item.impact == "medium"]
    if high:
        parts.append(f"High priority concerns: {'; '.join(high)}.")
    if medium:
        parts.append(f"Medium priority concerns: {'; '.join(medium)}.")
    parts.append(f"Primary anomaly type: {anomaly_type}. Human review recommended.")
    return " ".join(parts)


def _model_findings(reply: Any) -> tuple[list[Finding], float]:
    if not isinstance(reply, dict):
        return [], 0.0
    findings: list[Finding] = []
    for item in reply.get("additionalRisks") or []:
        if not isinstance(item, dict):
            continue
        impact = item.get("impact")
        findings.append(
            Finding(
                category=str(item.get("category", "AI Pattern")),
                finding=str(item.get("finding", "")),
                evidence=str(item.get("evidence", "")),
                impact=impact if impact in ("low", "medium", "high") else "low",
            )
        )
    contribution = reply.get("riskContribution", 0)
    if isinstance(contribution, bool) or not isinstance(contribution, (int, float)):
        contribution = 0
    if not findings:
        return [], 0.0
    return findings, max(0.0, min(float(contribution), 20.0))


class AnomalyDetector(OrchestratedService):
    service_name = "anomaly-detector"

    def __init__(self, orchestrator: Any, *, use_model: bool = True) -> None:
        super().__init__(orchestrator)
        self.use_model = use_model

    async def analyze_kpi_submission(self, params: dict[str, Any]) -> dict[str, Any]:
        submission = AnomalyInput.model_validate(params)
        current = submission.achievement
        findings: list[Finding] = []
        severity: Severity = "low"
        risk = 0.0
        anomaly_type = "none"

        if len(submission.historical_data) >= MIN_HISTORY:
            analysis = statistical_analysis(
                [point.percentage for point in submission.historical_data], current
            )
            if analysis.is_outlier:
                findings += statistical_findings(analysis, current)
                anomaly_type = "statistical"
                severity = escalate(severity, "high" if analysis.z_score > 3 else "medium")
                risk += min(abs(analysis.z_score) * 20, 40)

        checks: list[tuple[str, CheckResult]] = []
        if len(submission.peer_data) >= MIN_PEERS:
            checks.append(
                ("pattern", peer_comparison([peer.percentage for peer in submission.peer_data], current))
            )
        if submission.behavior_metrics is not None:
            checks.append(("behavioral", behavior_checks(submission.behavior_metrics)))
        if submission.evidence is not None:
            checks.append(("evidence", evidence_checks(submission.evidence)))

        for kind, check in checks:
            if not check.findings:
                continue
            findings += check.findings
            if anomaly_type == "none":
                anomaly_type = kind
            severity = escalate(severity, check.severity)
            risk += check.risk

        if self.use_model:
            extra, contribution = _model_findings(
                await self.ask("analyze", self._pattern_prompt(submission, findings), bypass_cache=True)
            )
            findings += extra
            risk += contribution

        final_risk = min(risk, 100.0)
        return {
            "id": f"anomaly-{uuid.uuid4().hex[:12]}",
            "kpi_id": submission.kpi_id,
            "user_id": submission.user_id,
            "anomaly_type": anomaly_type if findings else "none",
            "severity": severity,
            "risk_score": round(final_risk),
            "confidence": confidence(findings),
            "needs_human_review": final_risk > 60 or severity in ("high", "critical"),
            "auto_actions": auto_actions(final_risk, severity, anomaly_type),
            "description": describe(findings, final_risk, anomaly_type),
            "detailed_findings": [asdict(item) for item in findings],
            "recommendations": recommendations(findings),
            "detected_at": datetime.now(timezone.utc).isoformat(),
        }

    async def analyze(self, params: dict[str, Any]) -> Any:
        return await self.orchestrator.execute_prompt(str(params.get("prompt", "")), params)

    def _pattern_prompt(self, submission: AnomalyInput, findings: list[Finding]) -> str:
        history = "\n".join(
            f"- {point.year or 'N/A'}Q{point.quarter or 'N/A'}: {point.percentage:.1f}% "
            f"(score: {point.score:g})"
            for point in submission.historical_data
        )
        peers = [peer.percentage for peer in submission.peer_data]
        peer_avg = f"{sum(peers) / len(peers):.1f}%" if peers else "N/A"
        existing = "\n".join(f"- {item.category}: {item.finding}" for item in findings)
        return (
            "Analyze this KPI submission for potential fraud or anomalies.\n\n"
            f"Target: {submission.target:g}\n"
            f"Actual: {submission.actual_value:g}\n"
            f"Achievement: {submission.achievement:.1f}%\n\n"
            f"Historical Performance ({len(submission.historical_data)} cycles):\n{history}\n\n"
            f"Peer average over {len(peers)} peers: {peer_avg}\n\n"
            f"Existing Findings:\n{existing}\n\n"
            'Respond as JSON: {"additionalRisks": [{"category", "finding", "evidence", '
            '"impact": "low|medium|high"}], "riskContribution": 0-20}'
        )
