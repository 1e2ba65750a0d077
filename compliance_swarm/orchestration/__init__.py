"""
Pipeline orchestration: cancellation, progress, run context, the LangGraph
state machine and the orchestrator that runs it.

Import from the submodules directly; agents depend on the lower layers here.
"""
