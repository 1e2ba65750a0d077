"""
Static registry of known MCP tool servers and how to extract compliance
evidence from each.

  - MCPServerDefinition → endpoint, auth header scheme, required credentials
  - ExtractionProfile   → ordered ToolSpecs the extraction phase calls
  - find_tool()         → match a ToolSpec against a server's advertised tools
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from compliance_swarm.config import ConfigurationError
from compliance_swarm.models.enums import Framework, ServerCategory
from compliance_swarm.models.schemas import ToolDescriptor


class MCPServerDefinition(BaseModel):
    name: str
    display_name: str
    category: ServerCategory
    default_url: str = ""
    required_credentials: list[str] = Field(default_factory=lambda: ["access_token"])
    auth_header: str = "Authorization"
    auth_prefix: str = "Bearer "


class ToolSpec(BaseModel):
    key: str
    names: list[str]
    arguments: dict[str, Any] = Field(default_factory=dict)
    evidence_type: str = "configuration"


class ExtractionProfile(BaseModel):
    server: str
    agent: str
    frameworks: list[Framework] = Field(default_factory=list)  # empty → every framework
    tools: list[ToolSpec]

    def covers(self, framework: Framework) -> bool:
        return not self.frameworks or framework in self.frameworks


SERVER_REGISTRY: dict[str, MCPServerDefinition] = {
    s.name: s
    for s in [
        MCPServerDefinition(
            name="github",
            display_name="GitHub",
            category=ServerCategory.CODE,
            default_url="https://api.githubcopilot.com/mcp/",
        ),
        MCPServerDefinition(
            name="aws-core",
            display_name="AWS",
            category=ServerCategory.CLOUD,
        ),
        MCPServerDefinition(
            name="sonarqube",
            display_name="SonarQube",
            category=ServerCategory.ANALYSIS,
            required_credentials=["api_token"],
        ),
        MCPServerDefinition(
            name="sentry",
            display_name="Sentry",
            category=ServerCategory.MONITORING,
            default_url="https://mcp.sentry.dev/mcp",
        ),
        MCPServerDefinition(
            name="atlassian",
            display_name="Atlassian (Jira / Confluence)",
            category=ServerCategory.COMMUNICATION,
            default_url="https://mcp.atlassian.com/v1/sse",
        ),
    ]
}


EXTRACTION_PROFILES: dict[str, ExtractionProfile] = {
    p.server: p
    for p in [
        ExtractionProfile(
            server="github",
            agent="github-extraction",
            tools=[
                ToolSpec(
                    key="repositories",
                    names=["search_repositories", "list_repositories"],
                    arguments={"query": "user:@me"},
                    evidence_type="repository",
                ),
                ToolSpec(
                    key="secret_scan",
                    names=["search_code"],
                    arguments={"query": "password OR secret OR api_key in:file"},
                    evidence_type="code",
                ),
                ToolSpec(
                    key="security_alerts",
                    names=["list_code_scanning_alerts", "list_secret_scanning_alerts"],
                    evidence_type="vulnerability",
                ),
            ],
        ),
        ExtractionProfile(
            server="aws-core",
            agent="aws-extraction",
            tools=[
                ToolSpec(key="iam_users", names=["iam_list_users", "list_users"], evidence_type="identity"),
                ToolSpec(key="iam_roles", names=["iam_list_roles", "list_roles"], evidence_type="identity"),
                ToolSpec(key="iam_policies", names=["iam_list_policies", "list_policies"], evidence_type="policy"),
                ToolSpec(key="s3_buckets", names=["s3_list_buckets", "list_buckets"], evidence_type="storage"),
                ToolSpec(key="rds_instances", names=["rds_describe_db_instances"], evidence_type="database"),
                ToolSpec(
                    key="log_groups",
                    names=["cloudwatch_describe_log_groups", "describe_log_groups"],
                    evidence_type="logging",
                ),
                ToolSpec(
                    key="alarms",
                    names=["cloudwatch_get_active_alarms", "describe_alarms"],
                    evidence_type="monitoring",
                ),
            ],
        ),
        ExtractionProfile(
            server="sonarqube",
            agent="sonarqube-extraction",
            tools=[
                ToolSpec(key="projects", names=["search_my_sonarqube_projects", "list_projects"], evidence_type="project"),
                ToolSpec(
                    key="issues",
                    names=["search_sonar_issues_in_projects", "search_issues"],
                    arguments={"severities": ["BLOCKER", "CRITICAL"]},
                    evidence_type="vulnerability",
                ),
            ],
        ),
        ExtractionProfile(
            server="sentry",
            agent="sentry-extraction",
            tools=[
                ToolSpec(key="organizations", names=["find_organizations"], evidence_type="monitoring"),
                ToolSpec(
                    key="issues",
                    names=["find_issues", "search_issues"],
                    arguments={"query": "is:unresolved"},
                    evidence_type="incident",
                ),
            ],
        ),
        ExtractionProfile(
            server="atlassian",
            agent="atlassian-extraction",
            frameworks=[Framework.SOC2, Framework.ISO27001, Framework.HIPAA],
            tools=[
                ToolSpec(
                    key="security_tickets",
                    names=["searchJiraIssuesUsingJql", "jira_search"],
                    arguments={"jql": "labels = security ORDER BY created DESC"},
                    evidence_type="ticket",
                ),
                ToolSpec(
                    key="policies",
                    names=["searchConfluenceUsingCql", "confluence_search"],
                    arguments={"cql": 'type = page AND text ~ "security policy"'},
                    evidence_type="documentation",
                ),
            ],
        ),
    ]
}


def get_server(name: str) -> MCPServerDefinition:
    try:
        return SERVER_REGISTRY[name]
    except KeyError:
        raise ConfigurationError(f"Unknown MCP server: {name}") from None


def build_auth_headers(server: MCPServerDefinition, credentials: dict[str, str]) -> dict[str, str]:
    """
    Turn BYOK/OAuth credentials into request headers.  Keys prefixed with
    "header:" are passed through verbatim as custom headers.
    """
    missing = [field for field in server.required_credentials if not credentials.get(field)]
    if missing:
        raise ConfigurationError(f"{server.name}: missing credential(s) {', '.join(missing)}")

    headers: dict[str, str] = {}
    token = (
        credentials.get("access_token")
        or credentials.get("api_token")
        or credentials.get("api_key")
    )
    if token:
        headers[server.auth_header] = f"{server.auth_prefix}{token}"
    for key, value in credentials.items():
        if key.startswith("header:"):
            headers[key[len("header:"):]] = value
    return headers


def find_tool(available: list[ToolDescriptor], spec: ToolSpec) -> Optional[str]:
    """First advertised tool matching one of the spec's name variations."""
    names = [t.name for t in available]
    lowered = {n.lower(): n for n in names}
    for wanted in spec.names:
        if wanted in names:
            return wanted
        if wanted.lower() in lowered:
            return lowered[wanted.lower()]
    for wanted in spec.names:
        for name in names:
            if name.lower().endswith(wanted.lower()):
                return name
    return None
