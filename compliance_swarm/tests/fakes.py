"""
In-process fakes: the LLM, embedder and tool servers are scripted so
nothing touches the network.
"""

import asyncio
import inspect
import json
from typing import Any, Callable, Optional, Union

from compliance_swarm.mcp.client import ToolInvocationError, ToolInvoker
from compliance_swarm.mcp.embeddings.embedding_model import Embedder
from compliance_swarm.mcp.regulations import RequirementCatalog
from compliance_swarm.models.enums import Framework
from compliance_swarm.models.schemas import JsonPayload, ToolDescriptor
from compliance_swarm.prompts.templates import (
    GAP_ANALYSIS_SYSTEM,
    PLANNING_SYSTEM,
    QUERY_CORRECTION_SYSTEM,
    REMEDIATION_SYSTEM,
)
from compliance_swarm.services.llm_service import ChatCompletion


# ── Fakes ────────────────────────────────────────────────

class MappedEmbedder(Embedder):
    """
    The first mapping key (in insertion order) found in the text picks its
    vector; anything else gets *default*.  Lets a test dial in exact
    cosine similarities.
    """

    def __init__(self, mapping: Optional[dict[str, list[float]]] = None, default: Optional[list[float]] = None):
        self.mapping = mapping or {}
        self.default = default or [0.0, 0.0, 1.0]

    @property
    def dimension(self) -> int:
        return len(self.default)

    def embed(self, texts: list[str]) -> list[list[float]]:
        vectors = []
        for text in texts:
            for key, vector in self.mapping.items():
                if key in text:
                    vectors.append(list(vector))
                    break
            else:
                vectors.append(list(self.default))
        return vectors


Reply = Union[str, Exception, Callable[[str], Any]]

PLAN_JSON = json.dumps({
    "framework": "SOC2",
    "objectives": ["Verify access controls", "Verify monitoring"],
    "focusAreas": [{"category": "Access Control", "requirements": ["CC6.1"], "priority": "high"}],
    "extractionStrategy": {"dataSources": ["github"], "keyMetrics": ["mfa"], "evidenceTypes": ["config"]},
    "timeline": "1 week",
    "successCriteria": ["All controls assessed"],
})

COMPLIANT_JSON = json.dumps({"isCompliant": True, "hasGap": False})

REMEDIATION_JSON = json.dumps({
    "tasks": [
        {"title": "Enable MFA", "description": "Turn on MFA", "priority": "high",
         "estimatedEffort": "2 days", "steps": ["Open IAM", "Require MFA"]},
    ]
})


def gap_json(title: str, severity: str = "high", evidence: Optional[list[str]] = None) -> str:
    return json.dumps({
        "isCompliant": False,
        "hasGap": True,
        "gapTitle": title,
        "gapDescription": f"{title} is missing",
        "severity": severity,
        "evidence": evidence or [],
        "recommendation": f"Fix {title}",
    })


class ScriptedLLM(ChatCompletion):
    """Routes each call by system prompt to a canned reply, exception or callable."""

    def __init__(
        self,
        plan: Reply = PLAN_JSON,
        gap: Reply = COMPLIANT_JSON,
        remediation: Reply = REMEDIATION_JSON,
        correction: Reply = "",
    ):
        self.replies: dict[str, Reply] = {
            PLANNING_SYSTEM: plan,
            GAP_ANALYSIS_SYSTEM: gap,
            REMEDIATION_SYSTEM: remediation,
            QUERY_CORRECTION_SYSTEM: correction,
        }
        self.calls: list[tuple[str, str]] = []

    def calls_for(self, system_prompt: str) -> list[str]:
        return [user for system, user in self.calls if system == system_prompt]

    async def complete(self, system_prompt: str, user_prompt: str, temperature: Optional[float] = None) -> str:
        self.calls.append((system_prompt, user_prompt))
        reply = self.replies[system_prompt]
        if isinstance(reply, Exception):
            raise reply
        result = reply(user_prompt) if callable(reply) else reply
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        return result


class FakeToolInvoker(ToolInvoker):
    """
    *servers* maps server → {tool name → payload | Exception}.  Servers in
    *unreachable* fail on connect.
    """

    def __init__(self, servers: dict[str, dict[str, Any]], unreachable: tuple[str, ...] = ()):
        self.servers = servers
        self.unreachable = set(unreachable)
        self.connected: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    async def connect(self, server, credentials, user_scope, url=None) -> None:
        if server in self.unreachable:
            raise ToolInvocationError(f"Connecting to {server} failed: connection refused")
        self.connected.add((user_scope, server))

    async def list_tools(self, server, user_scope) -> list[ToolDescriptor]:
        return [ToolDescriptor(name=name) for name in self.servers.get(server, {})]

    async def call_tool(self, server, tool, arguments, user_scope):
        self.calls.append((server, tool, arguments))
        await asyncio.sleep(0)
        value = self.servers[server][tool]
        if isinstance(value, Exception):
            raise value
        return value

    async def disconnect(self, server, user_scope) -> None:
        self.connected.discard((user_scope, server))

    async def disconnect_all(self, user_scope=None) -> None:
        self.connected = {k for k in self.connected if user_scope is not None and k[0] != user_scope}


GITHUB_TOOLS = {
    "search_repositories": JsonPayload(data={"items": [
        {"name": "web", "private": True, "html_url": "https://github.com/acme/web"},
        {"name": "api", "private": False, "html_url": "https://github.com/acme/api"},
    ]}),
    "search_code": JsonPayload(data={"items": [
        {"path": "config/settings.py", "line": 12, "fragment": "password = 'hunter2'"},
    ]}),
}

AWS_TOOLS = {
    "iam_list_users": JsonPayload(data=[{"UserName": "admin", "MfaEnabled": False}]),
    "s3_list_buckets": JsonPayload(data=[{"Name": "logs", "Encryption": "AES256"}]),
}

SONAR_TOOLS = {
    "search_my_sonarqube_projects": JsonPayload(data={"projects": [{"key": "web"}]}),
}


def small_catalog(count: int = 5) -> RequirementCatalog:
    codes = [
        ("CC6.1", "Logical Access Controls", "Access Control"),
        ("CC6.2", "Credential Issuance", "Access Control"),
        ("CC6.6", "MFA for Privileged Access", "Access Control"),
        ("CC7.2", "System Monitoring", "Monitoring"),
        ("CC8.1", "Change Management", "Change Management"),
    ][:count]
    return RequirementCatalog({
        Framework.SOC2: [
            (code, title, category, f"{title} requirement text.", 0.9)
            for code, title, category in codes
        ]
    })


