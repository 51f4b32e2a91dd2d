"""DuckDuckGo web search tool."""

from __future__ import annotations

import asyncio
from typing import Any

from ddgs import DDGS

from aide.tools.base import Tool, ToolContext


class WebSearchTool(Tool):
    """Search the web using DuckDuckGo (no API key required)."""

    name = "web_search"
    description = "Search the web for current information, news and facts."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query."},
            "max_results": {
                "type": "integer",
                "description": "Max results to return (default 5, max 10).",
            },
        },
        "required": ["query"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        query = str(kwargs["query"]).strip()
        if not query:
            return "Error: query must not be empty."
        limit = max(1, min(int(kwargs.get("max_results") or 5), 10))

        results = await asyncio.to_thread(
            lambda: DDGS().text(query, max_results=limit, backend="duckduckgo")
        )

        if not results:
            return f'No results found for "{query}".'

        entries = [
            f"{r.get('title', '')}\n{r.get('href', '')}\n{r.get('body', '')}"
            for r in results
        ]
        return f'Search results for "{query}":\n\n' + "\n\n".join(entries)
