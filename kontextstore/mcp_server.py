"""MCP server for kontextstore.

Exposes the context store to AI coding agents via the Model Context Protocol.
Agents can query contexts, fetch one by id, find similar entries and pull the
most relevant snippets for a natural-language request.

Usage:
    kontextstore serve
    python -m kontextstore.mcp_server

Configure in Claude Code (~/.claude.json) or Cursor:
    {
      "mcpServers": {
        "kontextstore": {
          "command": "kontextstore",
          "args": ["serve"],
          "env": {"KONTEXTSTORE_CORPUS_PATH": "/path/to/corpus.json"}
        }
      }
    }
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server

from kontextstore.activity import log_tool_call
from kontextstore.config import Config
from kontextstore.corpus import build_service
from kontextstore.errors import KontextError
from kontextstore.models import ContextType
from kontextstore.service import DEFAULT_SIMILAR_LIMIT, ContextService

logger = logging.getLogger(__name__)

CONTEXT_TYPES = [t.value for t in ContextType]


def list_tool_definitions() -> list[types.Tool]:
    return [
        types.Tool(
            name="query_context",
            description=(
                "Search the knowledge base. Filters combine: types and tags match if ANY "
                "listed value matches, contractType must match exactly, and query is a "
                "case-insensitive substring search over content, title, description and tags. "
                "Results are ordered by relevance score."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Free-text filter"},
                    "types": {
                        "type": "array",
                        "items": {"type": "string", "enum": CONTEXT_TYPES},
                        "description": "Context types to include",
                    },
                    "tags": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Tags to match (any)",
                    },
                    "contractType": {"type": "string", "description": "Exact contract type"},
                    "limit": {"type": "integer", "minimum": 1, "default": 10},
                    "offset": {"type": "integer", "minimum": 0, "default": 0},
                    "includeTotal": {
                        "type": "boolean",
                        "default": True,
                        "description": "Count all matches, not just the returned page",
                    },
                },
            },
        ),
        types.Tool(
            name="get_context",
            description="Get a single context by its id.",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Context id"}},
                "required": ["id"],
            },
        ),
        types.Tool(
            name="find_similar",
            description=(
                "Find contexts similar to a given one, ranked by shared tags, then "
                "same type, then relevance score."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "Context id to compare against"},
                    "limit": {"type": "integer", "minimum": 1, "default": DEFAULT_SIMILAR_LIMIT},
                },
                "required": ["id"],
            },
        ),
        types.Tool(
            name="get_knowledge_stats",
            description="Get statistics about the knowledge base: total and per-type counts.",
            inputSchema={"type": "object", "properties": {}},
        ),
        types.Tool(
            name="enhance_with_context",
            description=(
                "Call this BEFORE answering a development question. Pulls the most "
                "relevant contexts for the request and returns them as markdown."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "The user request to enhance with context",
                    },
                    "autoInclude": {
                        "type": "boolean",
                        "default": True,
                        "description": "Include the matching contexts in the response",
                    },
                    "limit": {"type": "integer", "minimum": 1, "default": 3},
                },
                "required": ["query"],
            },
        ),
        types.Tool(
            name="add_context",
            description="Add a new context to the knowledge base.",
            inputSchema={
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": CONTEXT_TYPES},
                    "content": {"type": "string"},
                    "metadata": {
                        "type": "object",
                        "properties": {
                            "title": {"type": "string"},
                            "description": {"type": "string"},
                            "tags": {"type": "array", "items": {"type": "string"}},
                            "language": {"type": "string"},
                            "contractType": {"type": "string"},
                            "author": {"type": "string"},
                            "relevanceScore": {"type": "number", "minimum": 0, "maximum": 1},
                        },
                        "required": ["title"],
                    },
                    "relatedContextIds": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["type", "content", "metadata"],
            },
        ),
    ]


def create_server(service: ContextService, log_path: Path | None = None) -> Server:
    """Build an MCP server bound to one context service."""
    server = Server("kontextstore")

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return list_tool_definitions()

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        start = time.time()
        result: list[types.TextContent] = []
        error: str | None = None
        try:
            result = await dispatch_tool(service, name, arguments or {})
            return result
        except KontextError as e:
            error = str(e)
            result = [types.TextContent(type="text", text=f"Invalid request: {e}")]
            return result
        except Exception as e:
            logger.exception(f"Tool {name} failed")
            error = str(e)
            result = [types.TextContent(type="text", text=f"Error: {e}")]
            return result
        finally:
            duration_ms = int((time.time() - start) * 1000)
            result_text = result[0].text if result else ""
            log_tool_call(name, arguments, result_text, error, duration_ms, log_path=log_path)

    return server


async def dispatch_tool(
    service: ContextService, name: str, arguments: dict[str, Any]
) -> list[types.TextContent]:
    """Route a tool call to the appropriate handler."""
    if name == "query_context":
        return await _handle_query(service, arguments)
    elif name == "get_context":
        return await _handle_get(service, arguments["id"])
    elif name == "find_similar":
        return await _handle_similar(
            service, arguments["id"], arguments.get("limit", DEFAULT_SIMILAR_LIMIT)
        )
    elif name == "get_knowledge_stats":
        return await _handle_stats(service)
    elif name == "enhance_with_context":
        return await _handle_enhance(
            service,
            arguments["query"],
            arguments.get("autoInclude", True),
            arguments.get("limit", 3),
        )
    elif name == "add_context":
        return await _handle_add(service, arguments)
    else:
        return [_text(f"Unknown tool: {name}")]


def _text(text: str) -> types.TextContent:
    return types.TextContent(type="text", text=text)


def _json(data: Any) -> list[types.TextContent]:
    return [_text(json.dumps(data, indent=2, default=str))]


async def _handle_query(service: ContextService, arguments: dict) -> list[types.TextContent]:
    page = await service.query(arguments)
    return _json(page.to_dict())


async def _handle_get(service: ContextService, context_id: str) -> list[types.TextContent]:
    context = await service.retrieve(context_id)
    if context is None:
        return [_text(f"Context not found: {context_id}")]
    return _json(context.to_dict())


async def _handle_similar(
    service: ContextService, context_id: str, limit: int
) -> list[types.TextContent]:
    similar = await service.find_similar(context_id, limit)
    return _json({
        "id": context_id,
        "count": len(similar),
        "results": [c.to_dict() for c in similar],
    })


async def _handle_stats(service: ContextService) -> list[types.TextContent]:
    return _json(await service.get_stats())


async def _handle_enhance(
    service: ContextService, query: str, auto_include: bool, limit: int
) -> list[types.TextContent]:
    contexts = await service.search(query, limit=limit)

    lines = [f'Query: "{query}"', ""]
    if contexts and auto_include:
        lines.append("## Relevant Context")
        lines.append("")
        for context in contexts:
            lines.append(f"### {context.metadata.title}")
            if context.metadata.description:
                lines.append(context.metadata.description)
                lines.append("")
            lines.append(f"```{context.metadata.language or ''}")
            lines.append(context.content)
            lines.append("```")
            lines.append("")
    elif not contexts:
        lines.append("No relevant contexts found.")

    return _json({
        "enhancedQuery": "\n".join(lines),
        "contextIds": [c.id for c in contexts],
    })


async def _handle_add(service: ContextService, arguments: dict) -> list[types.TextContent]:
    context_id = await service.ingest(arguments)
    return _json({"success": True, "id": context_id})


async def main(config: Config | None = None) -> None:
    config = config or Config.load()
    service = await build_service(config)
    server = create_server(service, log_path=config.log_path)
    try:
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        await service.storage.close()


if __name__ == "__main__":
    import asyncio
    asyncio.run(main())
