"""
Phase 2 — Extraction Agent.

Fans out one extraction per relevant connected source and runs them
concurrently.  Each source connects through the tool invoker, discovers the
server's tools, calls every tool its extraction profile names, and turns
the payloads into evidence.  A failing source is recorded and never blocks
the others.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from pydantic import TypeAdapter, ValidationError

from compliance_swarm.agents.base_agent import BaseAgent
from compliance_swarm.mcp.servers import EXTRACTION_PROFILES, ExtractionProfile, ToolSpec, find_tool
from compliance_swarm.models.enums import Framework, Phase, ToolCallStatus
from compliance_swarm.models.schemas import (
    Connection,
    Evidence,
    ExtractionResult,
    JsonPayload,
    TextPayload,
    ToolCallRecord,
    ToolPayload,
)
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.cancellation import RunCancelledError

logger = logging.getLogger(__name__)

_PAYLOAD = TypeAdapter(ToolPayload)
_EVIDENCE_CHARS = 1000
_TEXT_EVIDENCE_CHARS = 2000


class ExtractionAgent(BaseAgent):
    phase = Phase.EXTRACTION
    label = "Extraction"

    async def _real_process(self, run: AssessmentRun) -> None:
        framework = Framework.parse(run.framework)
        relevant: list[tuple[Connection, ExtractionProfile]] = []
        for connection in self.ctx.connections:
            profile = EXTRACTION_PROFILES.get(connection.server)
            if profile is None or not profile.covers(framework):
                logger.info(f"[Extraction] Skipping {connection.server}: not relevant to {framework.value}")
                continue
            relevant.append((connection, profile))

        await self.ctx.step(
            run, f"Phase 2: Extracting evidence from {len(relevant)} source(s) in parallel"
        )

        outcomes = await asyncio.gather(
            *(self._extract_source(run, c, p) for c, p in relevant),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        succeeded = sum(1 for r in run.extraction_results if r.succeeded)
        evidence = sum(len(r.evidence) for r in run.extraction_results)
        await self.ctx.step(
            run,
            f"Phase 2 completed: {succeeded}/{len(relevant)} sources succeeded, "
            f"{evidence} evidence items collected",
        )

    # ── One source ───────────────────────────────────────

    async def _extract_source(
        self, run: AssessmentRun, connection: Connection, profile: ExtractionProfile
    ) -> None:
        server = connection.server
        result = ExtractionResult(source=server, agent=profile.agent)
        tools = self.ctx.swarm.tools
        token = self.ctx.token

        try:
            await token.guard(
                tools.connect(server, connection.credentials, run.user_id, connection.url),
                timeout=self.settings.mcp_list_tools_timeout_seconds,
            )
            available = await token.guard(
                tools.list_tools(server, run.user_id),
                timeout=self.settings.mcp_list_tools_timeout_seconds,
            )
        except RunCancelledError:
            raise
        except Exception as exc:
            result.error = f"Could not reach {server}: {str(exc) or type(exc).__name__}"
            await self._finish_source(run, result)
            return

        logger.info(f"[Extraction] {server}: {len(available)} tools available")

        for spec in profile.tools:
            name = find_tool(available, spec)
            if name is None:
                logger.debug(f"[Extraction] {server}: no tool for '{spec.key}'")
                continue
            record = await self._call(server, name, spec, run.user_id)
            result.tool_calls.append(record)
            if record.status == ToolCallStatus.SUCCESS and record.result is not None:
                result.payload[spec.key] = record.result
                room = self.settings.max_evidence_items_per_source - len(result.evidence)
                if room > 0:
                    result.evidence.extend(evidence_from_payload(server, spec, record.result)[:room])

        if not result.tool_calls:
            result.error = f"{server} exposes none of the extraction tools"
        elif not result.payload:
            last = result.tool_calls[-1].error
            result.error = f"All {len(result.tool_calls)} tool calls to {server} failed: {last}"

        await self._finish_source(run, result)

    async def _call(self, server: str, tool: str, spec: ToolSpec, user_scope: str) -> ToolCallRecord:
        t0 = time.perf_counter()
        try:
            raw = await self.ctx.token.guard(
                self.ctx.swarm.tools.call_tool(server, tool, dict(spec.arguments), user_scope),
                timeout=self.settings.mcp_call_tool_timeout_seconds,
            )
            payload = raw if isinstance(raw, (JsonPayload, TextPayload)) else _PAYLOAD.validate_python(raw)
        except RunCancelledError:
            raise
        except ValidationError as exc:
            return _record(server, tool, spec, t0, error=f"Malformed payload: {exc.error_count()} validation errors")
        except asyncio.TimeoutError:
            return _record(server, tool, spec, t0, error=f"Timed out after {self.settings.mcp_call_tool_timeout_seconds}s")
        except Exception as exc:
            return _record(server, tool, spec, t0, error=str(exc) or type(exc).__name__)
        return _record(server, tool, spec, t0, payload=payload)

    async def _finish_source(self, run: AssessmentRun, result: ExtractionResult) -> None:
        run.extraction_results.append(result)
        if result.error:
            await self.ctx.error(run, f"[Extraction] {result.error}", source=result.source)
        else:
            await self.ctx.step(
                run,
                f"{result.source}: {len(result.tool_calls)} tool calls, {len(result.evidence)} evidence items",
                source=result.source,
            )


def _record(
    server: str,
    tool: str,
    spec: ToolSpec,
    t0: float,
    payload: ToolPayload | None = None,
    error: str | None = None,
) -> ToolCallRecord:
    return ToolCallRecord(
        server=server,
        tool=tool,
        parameters=dict(spec.arguments),
        status=ToolCallStatus.ERROR if error else ToolCallStatus.SUCCESS,
        duration_ms=round((time.perf_counter() - t0) * 1000, 2),
        result=payload,
        error=error,
    )


# ── Payload → evidence ───────────────────────────────────


def _items(data: Any) -> list[Any]:
    """Flatten a JSON payload to its list of records."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for value in data.values():
            if isinstance(value, list) and value:
                return value
        return [data]
    return [data]


def evidence_from_payload(server: str, spec: ToolSpec, payload: ToolPayload) -> list[Evidence]:
    if isinstance(payload, TextPayload):
        text = payload.text.strip()
        if not text:
            return []
        return [Evidence(type=spec.evidence_type, source=server, content=text[:_TEXT_EVIDENCE_CHARS])]

    evidence: list[Evidence] = []
    for item in _items(payload.data):
        content = json.dumps(item, default=str) if not isinstance(item, str) else item
        file_path = url = None
        line_number = None
        if isinstance(item, dict):
            file_path = item.get("path") or item.get("file_path") or item.get("component")
            url = item.get("html_url") or item.get("url") or item.get("permalink")
            line = item.get("line") or item.get("line_number")
            line_number = line if isinstance(line, int) else None
        evidence.append(
            Evidence(
                type=spec.evidence_type,
                source=server,
                content=content[:_EVIDENCE_CHARS],
                file_path=str(file_path) if file_path else None,
                line_number=line_number,
                url=str(url) if url else None,
            )
        )
    return evidence
