"""
Report rendering — ComplianceReport to markdown or JSON.
"""

from __future__ import annotations

from typing import Any

from compliance_swarm.models.schemas import ComplianceReport


def render_markdown(report: ComplianceReport) -> str:
    meta = report.metadata
    generated = meta.generated_at.strftime("%Y-%m-%d %H:%M:%S UTC")

    lines: list[str] = [
        f"# {meta.framework} Compliance Report",
        "",
        f"Generated: {generated}",
        f"Data Sources: {', '.join(meta.data_sources)}",
        f"Extraction Agents: {', '.join(meta.extraction_agents)}",
        "",
        "## Executive Summary",
        "",
        report.executive_summary,
        "",
        "## Compliance Score",
        "",
        f"Overall: {report.compliance_score.overall}/100",
        "",
    ]
    if report.compliance_score.by_category:
        for category, score in report.compliance_score.by_category.items():
            lines.append(f"- {category}: {score}/100")
        lines.append("")

    lines += ["## Findings", ""]
    for i, finding in enumerate(report.findings, 1):
        lines += [
            f"### {i}. {finding.title}",
            "",
            f"**Severity**: {finding.severity.value.upper()}",
            f"**Description**: {finding.description}",
            "",
        ]
        if finding.evidence:
            lines.append("**Evidence**:")
            for ev in finding.evidence:
                lines.append(f"- {ev.citation}")
                if ev.quote:
                    lines.append(f'  Quote: "{ev.quote}"')
            lines.append("")
        if finding.recommendation:
            lines += [f"**Recommendation**: {finding.recommendation}", ""]

    lines += ["## Detailed Sections", ""]
    for section in report.sections:
        lines += [f"### {section.title}", "", section.content, ""]
        if section.evidence:
            lines.append("**Evidence Citations**:")
            lines += [f"- {ev.citation}" for ev in section.evidence]
            lines.append("")

    return "\n".join(lines).strip()


def render_json(report: ComplianceReport) -> dict[str, Any]:
    """Wire form of the report (camelCase keys, ISO timestamps)."""
    return report.model_dump(mode="json", by_alias=True)
