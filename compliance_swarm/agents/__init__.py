from .base_agent import BaseAgent
from .planning_agent import PlanningAgent
from .extraction_agent import ExtractionAgent
from .requirement_retrieval_agent import RequirementRetrievalAgent
from .gap_analysis_agent import GapAnalysisAgent
from .remediation_agent import RemediationAgent
from .report_agent import ReportAgent
from .comparison_agent import ComparisonAgent

__all__ = [
    "BaseAgent",
    "PlanningAgent",
    "ExtractionAgent",
    "RequirementRetrievalAgent",
    "GapAnalysisAgent",
    "RemediationAgent",
    "ReportAgent",
    "ComparisonAgent",
]
