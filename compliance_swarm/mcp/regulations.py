"""
Regulation catalog and library.

  - RequirementCatalog   → baseline controls per framework, scoped by a plan
  - default_plan()       → fallback assessment plan per framework
  - RegulationLibrary    → seeds requirement text into the vector store so
                           Corrective RAG has regulation chunks to retrieve
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from compliance_swarm.mcp.vector_store import VectorStore
from compliance_swarm.models.enums import ContentType, Framework
from compliance_swarm.models.schemas import AssessmentPlan, ComplianceRequirement, FocusArea
from compliance_swarm.rag.chunking import DocumentMetadata, RequirementStrategy, chunk

logger = logging.getLogger(__name__)


def _req(code: str, title: str, category: str, description: str, priority: float = 0.9):
    return (code, title, category, description, priority)


# ── Baseline controls ────────────────────────────────────

_CATALOG: dict[Framework, list[tuple[str, str, str, str, float]]] = {
    Framework.SOC2: [
        _req("CC6.1", "Logical and Physical Access Controls", "Access Control",
             "The entity implements logical access security software, infrastructure, and "
             "architectures over protected information assets to protect them from security events."),
        _req("CC6.2", "Prior to Issuing System Credentials", "Access Control",
             "The entity authorizes and removes access to systems, applications, functions, and "
             "data based on roles and responsibilities."),
        _req("CC6.6", "MFA for Privileged Access", "Access Control",
             "The entity implements multifactor authentication or equally strong compensating "
             "controls for privileged access.", 0.95),
        _req("CC7.2", "System Monitoring", "Monitoring",
             "The entity monitors system components and the operation of those components for "
             "anomalies indicative of malicious acts, natural disasters, and errors.", 0.85),
        _req("CC8.1", "Change Management", "Change Management",
             "The entity authorizes, designs, develops, configures, documents, tests, approves, and "
             "implements changes to infrastructure, data, software, and procedures.", 0.85),
        _req("CC6.7", "Encryption in Transit", "Data Protection",
             "The entity restricts the transmission of information to authorized users and protects "
             "it during transmission using encryption."),
        _req("CC6.8", "Encryption at Rest", "Data Protection",
             "The entity uses encryption and related controls to protect data at rest."),
    ],
    Framework.GDPR: [
        _req("Art. 5", "Principles of Processing", "Data Processing",
             "Personal data shall be processed lawfully, fairly and in a transparent manner.", 0.95),
        _req("Art. 25", "Data Protection by Design and by Default", "Data Protection",
             "The controller shall implement appropriate technical and organisational measures to "
             "ensure data protection principles are met."),
        _req("Art. 32", "Security of Processing", "Security",
             "The controller and processor shall implement appropriate technical and organisational "
             "measures to ensure a level of security appropriate to the risk.", 0.95),
        _req("Art. 33", "Notification of a Personal Data Breach", "Incident Response",
             "In the case of a personal data breach, the controller shall without undue delay notify "
             "the supervisory authority.", 0.85),
    ],
    Framework.HIPAA: [
        _req("164.308(a)(1)", "Security Management Process", "Security Management",
             "Implement policies and procedures to prevent, detect, contain, and correct security "
             "violations.", 0.95),
        _req("164.308(a)(3)", "Workforce Security", "Access Control",
             "Implement procedures for the authorization and supervision of workforce members who "
             "work with electronic protected health information."),
        _req("164.308(a)(4)", "Information Access Management", "Access Control",
             "Implement policies and procedures for authorizing access to electronic protected "
             "health information."),
        _req("164.312(a)(1)", "Access Control", "Access Control",
             "Implement technical policies and procedures that allow access to electronic protected "
             "health information only to persons or software programs granted access rights.", 0.95),
        _req("164.312(e)(1)", "Transmission Security", "Data Protection",
             "Implement technical security measures to guard against unauthorized access to "
             "electronic protected health information transmitted over a network."),
    ],
    Framework.ISO27001: [
        _req("A.5.1", "Policies for Information Security", "Information Security Policies",
             "Policies for information security shall be defined, approved by management, published, "
             "communicated and reviewed at planned intervals.", 0.95),
        _req("A.5.10", "Acceptance of Information Security Risk", "Risk Management",
             "The organization shall accept information security risks within the criteria "
             "established for risk acceptance."),
        _req("A.8.1", "Inventory of Assets", "Asset Management",
             "An inventory of information and other associated assets, including owners, shall be "
             "developed and maintained."),
        _req("A.9.1", "Access Control Policy", "Access Control",
             "An access control policy shall be established, documented, and reviewed based on "
             "business and information security requirements.", 0.95),
        _req("A.9.2", "User Access Management", "Access Control",
             "User access management shall ensure authorized user access and prevent unauthorized "
             "access to systems and services.", 0.95),
        _req("A.10.1", "Cryptographic Controls", "Cryptography",
             "A policy on the use of cryptographic controls for protection of information shall be "
             "developed and implemented.", 0.95),
        _req("A.12.4", "Logging and Monitoring", "Operations Security",
             "Event logs recording user activities, exceptions, faults, and information security "
             "events shall be produced, kept, and regularly reviewed.", 0.95),
        _req("A.12.6", "Management of Technical Vulnerabilities", "Operations Security",
             "Information about technical vulnerabilities shall be obtained in a timely fashion, "
             "exposure evaluated, and appropriate measures taken.", 0.95),
        _req("A.16.1", "Management of Information Security Incidents", "Incident Management",
             "Responsibilities and procedures shall ensure a quick, effective, and orderly response "
             "to information security incidents."),
    ],
    Framework.PCI_DSS: [
        _req("1.1", "Firewall Configuration", "Network Security",
             "Establish and implement firewall and router configuration standards.", 0.95),
        _req("1.3", "Prohibit Direct Public Access", "Network Security",
             "Prohibit direct public access between the Internet and any system component in the "
             "cardholder data environment.", 0.95),
        _req("2.1", "Vendor Defaults", "System Configuration",
             "Always change vendor-supplied defaults and remove or disable unnecessary default "
             "accounts before installing a system on the network."),
        _req("3.4", "Render PAN Unreadable", "Protect Stored Cardholder Data",
             "Render the primary account number unreadable anywhere it is stored.", 0.95),
        _req("4.1", "Use Strong Cryptography", "Encrypt Transmission",
             "Use strong cryptography and security protocols to safeguard sensitive cardholder data "
             "during transmission over open, public networks.", 0.95),
        _req("6.2", "Security Patches", "Secure Systems",
             "Ensure all system components and software are protected from known vulnerabilities by "
             "installing applicable vendor-supplied security patches."),
        _req("7.1", "Limit Access to Cardholder Data", "Restrict Access",
             "Limit access to system components and cardholder data to only those individuals whose "
             "job requires such access.", 0.95),
        _req("8.3", "Multi-Factor Authentication", "Restrict Access",
             "Secure all individual non-console administrative access and all remote access to the "
             "cardholder data environment using multi-factor authentication.", 0.95),
        _req("10.2", "Audit Trails", "Track and Monitor",
             "Implement automated audit trails for all system components to reconstruct security "
             "events.", 0.95),
    ],
}


_DEFAULT_FOCUS: dict[Framework, list[tuple[str, list[str], str]]] = {
    Framework.SOC2: [
        ("Access Control", ["CC6.1", "CC6.2", "CC6.6"], "high"),
        ("Data Protection", ["CC6.7", "CC6.8"], "high"),
        ("Monitoring", ["CC7.2"], "medium"),
    ],
    Framework.GDPR: [
        ("Data Privacy", ["Art. 5", "Art. 25"], "high"),
        ("Security", ["Art. 32"], "high"),
        ("Incident Response", ["Art. 33"], "medium"),
    ],
    Framework.HIPAA: [
        ("Administrative Safeguards", ["164.308"], "high"),
        ("Technical Safeguards", ["164.312"], "high"),
    ],
    Framework.ISO27001: [
        ("Information Security Policies", ["A.5.1"], "high"),
        ("Access Control", ["A.9.1", "A.9.2"], "high"),
        ("Cryptography", ["A.10.1"], "high"),
        ("Operations Security", ["A.12.4", "A.12.6"], "high"),
    ],
    Framework.PCI_DSS: [
        ("Network Security", ["1.1", "1.3"], "high"),
        ("Protect Stored Cardholder Data", ["3.4"], "high"),
        ("Encrypt Transmission", ["4.1"], "high"),
        ("Restrict Access", ["7.1", "8.3"], "high"),
        ("Track and Monitor", ["10.2"], "high"),
    ],
}

_CODE_PREFIXES = re.compile(
    r"^(?:pci\s*dss|iso\s*27001(?::\d{4})?|article|art\.?|§)\s*", re.IGNORECASE
)


def normalize_code(code: str) -> str:
    """Comparable key: 'Article 32' → '32', '§164.308' → '164.308', 'PCI DSS 1.1' → '1.1'."""
    stripped = _CODE_PREFIXES.sub("", code.strip())
    return stripped.replace(" ", "").lower()


def _code_within(key: str, focus: str) -> bool:
    """True when *key* equals *focus* or is a sub-clause of it ("a.5.1" in "a.5", not "a.5.10" in "a.5.1")."""
    if key == focus:
        return True
    return key.startswith(focus) and key[len(focus)] in ".("


def default_plan(framework: Framework, sources: list[str]) -> AssessmentPlan:
    focus = _DEFAULT_FOCUS[framework]
    return AssessmentPlan(
        framework=framework.value,
        objectives=[f"Assess {category.lower()} controls" for category, _, _ in focus],
        focus_areas=[
            FocusArea(category=category, requirements=codes, priority=priority)
            for category, codes, priority in focus
        ],
        extraction_strategy={
            "data_sources": list(sources),
            "key_metrics": ["access controls", "encryption status", "logging coverage"],
            "evidence_types": ["configuration", "code", "logs"],
        },
        timeline="single pass",
        success_criteria=[f"Every in-scope {framework.value} control assessed with evidence"],
    )


class RequirementCatalog:
    """Baseline requirements per framework; swappable in tests."""

    def __init__(
        self, entries: Optional[dict[Framework, list[tuple[str, str, str, str, float]]]] = None
    ):
        self._entries = entries if entries is not None else _CATALOG

    def frameworks(self) -> list[Framework]:
        return list(self._entries)

    def requirements(self, framework: Framework) -> list[ComplianceRequirement]:
        return [
            ComplianceRequirement(
                code=code,
                title=title,
                category=category,
                description=description,
                framework=framework.value,
                priority=priority,
            )
            for code, title, category, description, priority in self._entries.get(framework, [])
        ]

    def in_scope(
        self, framework: Framework, plan: Optional[AssessmentPlan], limit: int
    ) -> list[ComplianceRequirement]:
        """Plan focus-area codes first (in plan order), then the rest in catalog order."""
        requirements = self.requirements(framework)
        focus_codes = [
            normalize_code(code)
            for area in (plan.focus_areas if plan else [])
            for code in area.requirements
        ]

        def focus_rank(req: ComplianceRequirement) -> Optional[int]:
            key = normalize_code(req.code)
            for i, focus in enumerate(focus_codes):
                if focus and _code_within(key, focus):
                    return i
            return None

        focused = [(focus_rank(r), i, r) for i, r in enumerate(requirements)]
        ordered = [r for rank, _, r in sorted(f for f in focused if f[0] is not None)]
        ordered += [r for rank, _, r in focused if rank is None]
        return ordered[:limit]


class RegulationLibrary:
    """Seeds framework requirement text into the shared vector store."""

    def __init__(self, catalog: RequirementCatalog, vector_store: VectorStore):
        self.catalog = catalog
        self.vector_store = vector_store

    async def seed(self, framework: Framework, documents: Optional[dict[str, str]] = None) -> int:
        """
        Chunk and store regulation text for *framework*.  *documents* maps a
        requirement code to its full regulation text; codes without one fall
        back to the catalog description.
        """
        documents = documents or {}
        chunks = []
        for req in self.catalog.requirements(framework):
            text = documents.get(req.code) or f"{req.code} {req.title}\n\n{req.description}"
            chunks.extend(
                chunk(
                    text,
                    DocumentMetadata(
                        source=f"{framework.value}-catalog",
                        type=ContentType.REQUIREMENT,
                        framework=framework.value,
                        requirement_code=req.code,
                    ),
                    RequirementStrategy(code=req.code, framework=framework.value),
                )
            )
        stored = await self.vector_store.store(chunks)
        logger.info(f"[Regulations] Seeded {stored} chunks for {framework.value}")
        return stored
