"""
Tests: full assessment runs through the orchestrator and pipeline graph.

Run with:
    pytest compliance_swarm/tests/test_pipeline.py -v
"""

import asyncio
import math

import pytest

from compliance_swarm.agents import report_agent
from compliance_swarm.config import Settings
from compliance_swarm.models.enums import ContentType, EventType, RunStatus
from compliance_swarm.models.schemas import Chunk, ChunkMetadata, Connection
from compliance_swarm.orchestration.runner import PreconditionError, SwarmOrchestrator
from compliance_swarm.persistence import InMemoryRunRepository
from compliance_swarm.prompts.templates import GAP_ANALYSIS_SYSTEM, QUERY_CORRECTION_SYSTEM
from compliance_swarm.tests.fakes import (
    AWS_TOOLS,
    COMPLIANT_JSON,
    GITHUB_TOOLS,
    SONAR_TOOLS,
    FakeToolInvoker,
    MappedEmbedder,
    ScriptedLLM,
    gap_json,
)

GITHUB = Connection(server="github", credentials={"access_token": "t"})
AWS = Connection(server="aws-core", credentials={"access_token": "t"})
SONAR = Connection(server="sonarqube", credentials={"api_token": "t"})


def _assess(swarm, connections=(GITHUB,), events=None, project_id="proj-1"):
    orchestrator = SwarmOrchestrator(swarm)
    callback = events.append if events is not None else None
    return asyncio.run(
        orchestrator.run(project_id, "user-1", "SOC2", list(connections), on_progress=callback)
    )


def _gap_only_for(code: str, title: str):
    return lambda prompt: gap_json(title) if f"control {code}" in prompt else COMPLIANT_JSON


class TestHappyPath:
    def _swarm(self, make_context):
        embedder = MappedEmbedder({
            "access review policy": [1.0, 0.0, 0.0],
            "CC6.1": [0.9, math.sqrt(0.19), 0.0],
        })
        llm = ScriptedLLM(gap=_gap_only_for("CC6.1", "Access reviews not performed"))
        swarm = make_context(llm=llm, embedder=embedder)

        meta = ChunkMetadata(
            source="SOC2-catalog", type=ContentType.REQUIREMENT, framework="SOC2", requirement_code="CC6.1"
        )
        asyncio.run(swarm.vector_store.store([
            Chunk(id="soc2-cc61-0", content="access review policy: review user access quarterly", metadata=meta),
            Chunk(id="soc2-cc61-1", content="access review policy: revoke access on termination", metadata=meta),
        ]))
        return swarm, llm

    def test_run_completes_with_report(self, make_context):
        swarm, llm = self._swarm(make_context)
        events = []

        run = _assess(swarm, events=events)

        assert run.status == RunStatus.COMPLETED
        assert run.plan.objectives == ["Verify access controls", "Verify monitoring"]
        assert run.requirements[0].requirement.code == "CC6.1"
        assert len(run.requirements[0].chunks) == 2
        assert all(not r.chunks for r in run.requirements[1:])
        [cc61_prompt] = [p for p in llm.calls_for(GAP_ANALYSIS_SYSTEM) if "control CC6.1" in p]
        assert "access review policy" in cc61_prompt

        assert [f.title for f in run.gap_findings] == ["Access reviews not performed"]
        assert [t.title for t in run.remediation_plan] == ["Enable MFA"]
        assert run.report.compliance_score.overall == 90
        assert run.comparison is None
        assert run.errors == []

    def test_progress_ends_with_a_single_complete_event(self, make_context):
        swarm, _ = self._swarm(make_context)
        events = []

        run = _assess(swarm, events=events)

        types = [e.type for e in events]
        assert types[-1] == EventType.COMPLETE
        assert types.count(EventType.COMPLETE) == 1
        phases = [e.phase.order for e in events]
        assert phases == sorted(phases)
        assert events[-1].snapshot.status == RunStatus.COMPLETED
        assert swarm.publisher.latest(run.run_id).status == RunStatus.COMPLETED

    def test_final_state_is_persisted(self, make_context):
        swarm, _ = self._swarm(make_context)
        run = _assess(swarm)

        stored = swarm.repository.get_run(run.run_id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.report is not None


class TestDegradedRuns:
    def test_one_unreachable_source_still_completes(self, make_context):
        tools = FakeToolInvoker(
            {"github": GITHUB_TOOLS, "sonarqube": SONAR_TOOLS, "aws-core": AWS_TOOLS},
            unreachable=("aws-core",),
        )
        run = _assess(make_context(tools=tools), connections=(GITHUB, SONAR, AWS))

        assert run.status == RunStatus.COMPLETED
        assert sorted(r.source for r in run.extraction_results if r.succeeded) == ["github", "sonarqube"]
        assert [r.source for r in run.extraction_results if not r.succeeded] == ["aws-core"]
        assert sorted(run.report.metadata.data_sources) == ["aws-core", "github", "sonarqube"]
        assert sorted(run.report.metadata.extraction_agents) == ["github-extraction", "sonarqube-extraction"]

    def test_one_malformed_assessment_out_of_five(self, make_context):
        def reply(prompt):
            return "not json" if "control CC6.2" in prompt else gap_json("Control missing", "medium")

        run = _assess(make_context(llm=ScriptedLLM(gap=reply)))

        assert run.status == RunStatus.COMPLETED
        assert len(run.requirements) == 5
        assert len(run.gap_findings) == 4
        assert "CC6.2" not in [f.requirement_code for f in run.gap_findings]
        assert run.report.compliance_score.overall == 80
        assert len(run.remediation_plan) == 4

    def test_malformed_plan_falls_back_to_default(self, make_context):
        run = _assess(make_context(llm=ScriptedLLM(plan="I cannot produce JSON today")))

        assert run.status == RunStatus.COMPLETED
        assert run.plan is not None
        assert run.plan.objectives
        assert run.errors[0].startswith("[Planning]")

    def test_planning_failure_fails_the_run(self, make_context):
        run = _assess(make_context(llm=ScriptedLLM(plan=RuntimeError("model unavailable"))))

        assert run.status == RunStatus.FAILED
        assert run.errors[0] == "[Planning] model unavailable"
        assert run.extraction_results == []
        assert run.report is None

    def test_report_assembly_failure_fails_the_run(self, make_context, monkeypatch):
        def broken(run):
            raise RuntimeError("score table corrupt")

        monkeypatch.setattr(report_agent, "build_report", broken)
        events = []

        run = _assess(make_context(), events=events)

        assert run.status == RunStatus.FAILED
        assert run.report is None
        assert any(e.startswith("[Report]") for e in run.errors)
        assert events[-1].type == EventType.COMPLETE
        assert events[-1].snapshot.status == RunStatus.FAILED


class TestCancellation:
    def test_cancel_during_gap_analysis(self, make_context):
        async def scenario():
            started = asyncio.Event()

            async def hang(prompt):
                started.set()
                await asyncio.Event().wait()

            swarm = make_context(llm=ScriptedLLM(gap=hang))
            events = []
            handle = SwarmOrchestrator(swarm).start(
                "proj-1", "user-1", "SOC2", [GITHUB], on_progress=events.append
            )
            await asyncio.wait_for(started.wait(), timeout=5)
            handle.cancel()
            run = await asyncio.wait_for(handle.result(), timeout=5)
            return run, events

        run, events = asyncio.run(scenario())

        assert run.status == RunStatus.FAILED
        assert "Run cancelled" in run.errors
        assert run.report is None
        assert events[-1].type == EventType.COMPLETE
        assert events[-1].message == "Run cancelled"


class TestComparison:
    def test_second_run_is_compared_with_the_first(self, make_context):
        repository = InMemoryRunRepository()
        first = _assess(make_context(repository=repository))
        second = _assess(
            make_context(
                repository=repository,
                llm=ScriptedLLM(gap=_gap_only_for("CC7.2", "Monitoring disabled")),
            )
        )

        assert first.comparison is None
        assert second.comparison.previous_run_id == first.run_id
        assert second.comparison.score_delta == -10
        assert second.comparison.new_findings == ["Monitoring disabled"]


class TestLimits:
    def test_requirement_limit_comes_from_environment(self, make_context, monkeypatch):
        monkeypatch.setenv("MAX_REQUIREMENTS_PER_RUN", "2")
        monkeypatch.setenv("REQUIREMENT_RETRIEVAL_MODE", "hybrid")
        cfg = Settings(_env_file=None, groq_api_key="test-key")
        llm = ScriptedLLM()

        run = _assess(make_context(llm=llm, settings_override=cfg))

        assert [r.requirement.code for r in run.requirements] == ["CC6.1", "CC6.2"]
        assert all(r.iterations == 1 for r in run.requirements)
        assert llm.calls_for(QUERY_CORRECTION_SYSTEM) == []


class TestPreconditions:
    def test_requires_a_connection(self, make_context):
        with pytest.raises(PreconditionError):
            SwarmOrchestrator(make_context()).start("p", "u", "SOC2", [])

    def test_rejects_unknown_servers(self, make_context):
        with pytest.raises(PreconditionError, match="Unknown data source"):
            SwarmOrchestrator(make_context()).start("p", "u", "SOC2", [Connection(server="ftp")])

    def test_rejects_unknown_frameworks(self, make_context):
        with pytest.raises(PreconditionError):
            SwarmOrchestrator(make_context()).start("p", "u", "FedRAMP", [GITHUB])

    def test_rejects_frameworks_without_a_catalog(self, make_context):
        with pytest.raises(PreconditionError, match="No requirement catalog"):
            SwarmOrchestrator(make_context()).start("p", "u", "GDPR", [GITHUB])

    def test_required_source_category(self, make_context, settings):
        cfg = settings.model_copy(update={"required_source_categories": ["cloud"]})
        with pytest.raises(PreconditionError, match="cloud"):
            SwarmOrchestrator(make_context(settings_override=cfg)).start("p", "u", "SOC2", [GITHUB])
