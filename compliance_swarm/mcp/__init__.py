"""
MCP — the boundary between the pipeline and everything external:
tool servers, the embedding model, and the regulation vector store.
"""

from .client import ConnectionLimitError, MCPClientManager, ToolInvocationError, ToolInvoker

__all__ = ["ConnectionLimitError", "MCPClientManager", "ToolInvocationError", "ToolInvoker"]
