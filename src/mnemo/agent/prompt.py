"""Prompt builder for the agent."""

import json
from typing import Any

from ..llm.types import ToolSpec

SYSTEM_PROMPT_BASE = """You are a helpful AI assistant with access to the following tools:
{tools_description}

When you need a tool, respond with a tool call. Always be helpful and provide clear, concise responses.
If you cannot complete a task with the available tools, explain why."""

# Prefix for replies where the model called tools without writing any prose.
TOOL_LEAD_IN = "I ran the requested tools. Here is what came back:"


def build_system_prompt(
    tool_specs: list[ToolSpec],
    memory_block: str = "",
    base_prompt: str | None = None,
) -> str:
    """Build the system prompt with available tools and known context.

    Args:
        tool_specs: Tools offered to the model.
        memory_block: Optional XML block with facts about the user.
        base_prompt: Replaces the default prompt when given.

    Returns:
        Complete system prompt string.
    """
    if base_prompt is None:
        if not tool_specs:
            tools_desc = "No tools available."
        else:
            tools_desc = "\n".join(f"- {t.name}: {t.description}" for t in tool_specs)
        prompt = SYSTEM_PROMPT_BASE.format(tools_description=tools_desc)
    else:
        prompt = base_prompt

    if memory_block.strip():
        prompt += "\n\n" + memory_block

    return prompt


def format_tool_outcome(tool_name: str, success: bool, data: Any, error: str | None) -> str:
    """Format a tool outcome for the visible response."""
    if success:
        return f"Tool {tool_name} result: {json.dumps(data, indent=2, default=str)}"
    return f"Tool {tool_name} failed: {error}"


def compose_reply(content: str, tool_summaries: list[str]) -> str:
    """Combine model prose with tool summaries; never empty when tools ran."""
    if not tool_summaries:
        return content
    summary = "\n".join(tool_summaries)
    lead = content.strip() or TOOL_LEAD_IN
    return f"{lead}\n\n{summary}"
