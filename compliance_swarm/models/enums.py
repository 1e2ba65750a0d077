"""
Enumerations used across the assessment pipeline.
"""

from enum import Enum


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class Phase(str, Enum):
    """Pipeline phases in their strict forward order."""

    PENDING = "pending"
    PLANNING = "phase1_planning"
    EXTRACTION = "phase2_extraction"
    REQUIREMENT_RETRIEVAL = "phase3_1_requirement_retrieval"
    GAP_ANALYSIS = "phase3_2_gap_analysis"
    REMEDIATION = "phase3_3_remediation"
    REPORT = "phase4_report"
    COMPARISON = "phase5_comparison"
    FINISHED = "finished"

    @property
    def order(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = list(Phase)


class Framework(str, Enum):
    SOC2 = "SOC2"
    GDPR = "GDPR"
    HIPAA = "HIPAA"
    ISO27001 = "ISO27001"
    PCI_DSS = "PCI-DSS"

    @classmethod
    def parse(cls, value: str) -> "Framework":
        """Accept the loose spellings users type ("soc 2", "iso", "pci")."""
        key = value.upper().replace(" ", "").replace("_", "-")
        aliases = {
            "SOC2": cls.SOC2,
            "SOC-2": cls.SOC2,
            "GDPR": cls.GDPR,
            "HIPAA": cls.HIPAA,
            "ISO": cls.ISO27001,
            "ISO27001": cls.ISO27001,
            "ISO-27001": cls.ISO27001,
            "PCI": cls.PCI_DSS,
            "PCI-DSS": cls.PCI_DSS,
            "PCIDSS": cls.PCI_DSS,
        }
        if key not in aliases:
            raise ValueError(f"Unsupported framework: {value}")
        return aliases[key]


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"critical": 4, "high": 3, "medium": 2, "low": 1}[self.value]


class ContentType(str, Enum):
    CODE = "code"
    DOCUMENTATION = "documentation"
    CONFIG = "config"
    REQUIREMENT = "requirement"


class ToolCallStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class EventType(str, Enum):
    STEP = "step"
    ERROR = "error"
    COMPLETE = "complete"


class ServerCategory(str, Enum):
    CLOUD = "cloud"
    DATABASE = "database"
    CICD = "cicd"
    MONITORING = "monitoring"
    ANALYSIS = "analysis"
    COMMUNICATION = "communication"
    CODE = "code"
