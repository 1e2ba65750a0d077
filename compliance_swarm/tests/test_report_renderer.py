"""
Tests: report rendering to markdown and JSON.

Run with:
    pytest compliance_swarm/tests/test_report_renderer.py -v
"""

from datetime import datetime, timezone

from compliance_swarm.agents.report_agent import build_report
from compliance_swarm.models.enums import Severity
from compliance_swarm.models.schemas import (
    ComplianceReport,
    ComplianceScore,
    Evidence,
    ExtractionResult,
    GapFinding,
    ReportMetadata,
)
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.services.report_renderer import render_json, render_markdown


def _report() -> ComplianceReport:
    run = AssessmentRun(project_id="proj-1", user_id="user-1", framework="SOC2")
    run.extraction_results = [ExtractionResult(source="github", agent="github-extraction")]
    run.gap_findings = [
        GapFinding(
            id="gap-CC6.1-0",
            requirement_code="CC6.1",
            category="Access Control",
            severity=Severity.HIGH,
            title="Hard-coded credentials",
            description="A password is committed to the repository.",
            evidence=[
                Evidence(
                    type="code",
                    source="github",
                    content="password = 'hunter2'",
                    file_path="config/settings.py",
                    line_number=12,
                )
            ],
            recommendation="Move secrets to a vault",
        )
    ]
    report = build_report(run)
    report.metadata.generated_at = datetime(2026, 3, 1, 9, 30, 0, tzinfo=timezone.utc)
    return report


class TestMarkdown:
    def test_header_and_score(self):
        text = render_markdown(_report())

        assert text.startswith("# SOC2 Compliance Report\n\nGenerated: 2026-03-01 09:30:00 UTC")
        assert "Data Sources: github" in text
        assert "Extraction Agents: github-extraction" in text
        assert "Overall: 90/100" in text
        assert "- Access Control: 90/100" in text

    def test_findings_carry_severity_evidence_and_recommendation(self):
        text = render_markdown(_report())

        assert "### 1. Hard-coded credentials" in text
        assert "**Severity**: HIGH" in text
        assert "- code from github (config/settings.py:12)" in text
        assert "  Quote: \"password = 'hunter2'\"" in text
        assert "**Recommendation**: Move secrets to a vault" in text

    def test_headings_are_kept_when_lists_are_empty(self):
        report = ComplianceReport(
            executive_summary="Nothing assessed.",
            compliance_score=ComplianceScore(overall=100),
            metadata=ReportMetadata(framework="GDPR"),
        )
        text = render_markdown(report)

        assert "Overall: 100/100\n\n## Findings\n\n## Detailed Sections" in text
        assert text.endswith("## Detailed Sections")
        assert "**Evidence" not in text
        assert "- " not in text.split("## Compliance Score")[1]


class TestJson:
    def test_wire_form_uses_camel_case(self):
        data = render_json(_report())

        assert data["complianceScore"]["overall"] == 90
        assert data["complianceScore"]["byCategory"] == {"Access Control": 90}
        assert data["findings"][0]["requirementCode"] == "CC6.1"
        assert data["metadata"]["generatedAt"].startswith("2026-03-01T09:30:00")
        assert "executiveSummary" in data
