"""
Prompt templates for every LLM call in the pipeline.

Each builder returns the user prompt; system prompts are module constants.
All assessment prompts ask for a single strict JSON object.
"""

from __future__ import annotations

# ── System prompts ───────────────────────────────────────

PLANNING_SYSTEM = (
    "Senior cybersecurity auditor. Build compliance assessment plans with concrete "
    "security controls, the evidence each control needs, and risk-based priorities. "
    "Keep objectives measurable. Respond with JSON only."
)

GAP_ANALYSIS_SYSTEM = (
    "Cybersecurity auditor. Decide whether collected evidence satisfies a single "
    "compliance control. Look for missing access controls, weak data protection, "
    "insufficient monitoring and non-compliant configuration. Cite evidence and "
    "rate severity. Respond with JSON only."
)

REMEDIATION_SYSTEM = (
    "Cybersecurity auditor. Turn a compliance gap into a prioritized remediation "
    "plan with step-by-step tasks and effort estimates. Respond with JSON only."
)

QUERY_CORRECTION_SYSTEM = (
    "You are an expert at improving search queries for technical compliance documentation."
)


# ── Builders ─────────────────────────────────────────────


def assessment_plan_prompt(framework: str, sources: list[str]) -> str:
    return f"""Create a {framework} compliance assessment plan.

Data Sources: {", ".join(sources) or "none connected"}

Cover: Access Control (IAM, MFA), Data Protection (encryption, backup), Monitoring (logging, alerting), Change Management, Incident Response.

Return JSON: {{"framework": "{framework}", "objectives": [], "focusAreas": [{{"category": "Access Control", "requirements": ["CC6.1"], "priority": "high"}}], "extractionStrategy": {{"dataSources": [], "keyMetrics": [], "evidenceTypes": []}}, "timeline": "", "successCriteria": []}}"""


def gap_analysis_prompt(
    framework: str,
    code: str,
    title: str,
    description: str,
    regulation_text: str,
    evidence_text: str,
) -> str:
    return f"""Assess {framework} control {code} ({title}).

REQUIREMENT: {description}

REGULATION CONTEXT:
{regulation_text[:2000] or "No regulation text retrieved."}

COLLECTED EVIDENCE:
{evidence_text[:3000] or "No evidence was collected from connected sources."}

Assess: control implementation, configuration weaknesses, missing measures, supporting evidence.

Return JSON: {{"isCompliant": boolean, "hasGap": boolean, "gapTitle": "", "gapDescription": "", "evidence": [], "severity": "critical|high|medium|low", "recommendation": ""}}"""


def remediation_prompt(gap_title: str, gap_description: str, requirement: str) -> str:
    gap = f"{gap_title}: {gap_description}"
    return f"""Create a remediation plan.

GAP: {gap[:500]}
REQUIREMENT: {requirement}

Include: root cause, security controls, step-by-step tasks, best practices.

Return JSON: {{"tasks": [{{"title": "", "description": "", "priority": "critical|high|medium|low", "estimatedEffort": "", "steps": []}}]}}"""


def query_correction_prompt(
    original_query: str,
    current_query: str,
    snippets: list[str],
    context: str | None = None,
) -> str:
    results = "\n".join(f"{i + 1}. {s}" for i, s in enumerate(snippets)) or "(no results)"
    context_block = f"\nAdditional context: {context}\n" if context else ""
    return f"""Original query: {original_query}
Current query: {current_query}
{context_block}
Top results so far:
{results}

The results are not specific enough. Propose a better search query that targets the missing regulation details.
Return ONLY the improved query, nothing else."""
