"""LangGraph agent definition for SiteWatch Agent."""

import sqlite3
from typing import Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import SystemMessage, ToolMessage
from langgraph.checkpoint.sqlite import SqliteSaver
from langgraph.graph import END, START, MessagesState, StateGraph

SYSTEM_PROMPT = """You are SiteWatch, a helpful assistant that tracks websites and RSS feeds and reports when their content changes.

You help users:
- Start tracking a website or RSS/Atom feed by URL
- See their tracked websites, most recently changed first
- Check all websites for updates, or check a single page for any change
- See what is new on a website since the previous check
- Rename websites, organize them into categories, and stop tracking them

When a user wants to follow a website or feed, use the add_website tool with the URL they provide.
When a user asks to see their websites, use the list_websites tool. You can filter by a search query, a category, or only changed websites.
When a user asks whether anything changed or wants a refresh, use the check_for_updates tool.
When a user asks about one specific page, use the check_website tool with its title or URL.
When a user asks what changed or what is new on a website, use the show_changes tool.
When a user wants to rename or re-categorize a website, use the update_website tool.
When a user wants to stop tracking a website, use the remove_website tool.
If a check reports errors for some websites, mention which ones could not be reached.
When the user's intent is unclear, ask a clarifying question rather than guessing.
Be concise but informative in your responses."""


def create_agent(
    tools: list,
    checkpoint_db_path: str = "sitewatch_agent_checkpoints.db",
):
    """Create and compile the LangGraph agent.

    Args:
        tools: Tool functions to bind to the agent (see tools.build_tools).
        checkpoint_db_path: Path to SQLite database for LangGraph checkpointing.

    Returns:
        Compiled LangGraph agent.
    """
    model = ChatAnthropic(
        model="claude-sonnet-4-5-20250929",
        temperature=0,
    )

    if tools:
        model_with_tools = model.bind_tools(tools)
    else:
        model_with_tools = model

    tools_by_name = {tool.name: tool for tool in tools}

    def agent_node(state: MessagesState):
        """LLM call node: decides whether to use a tool or respond directly."""
        messages = [SystemMessage(content=SYSTEM_PROMPT)] + state["messages"]
        response = model_with_tools.invoke(messages)
        return {"messages": [response]}

    def tool_node(state: MessagesState):
        """Execute tool calls from the LLM response."""
        results = []
        last_message = state["messages"][-1]
        for tool_call in last_message.tool_calls:
            tool = tools_by_name[tool_call["name"]]
            result = tool.invoke(tool_call["args"])
            results.append(
                ToolMessage(content=str(result), tool_call_id=tool_call["id"])
            )
        return {"messages": results}

    def should_continue(state: MessagesState) -> Literal["tool_node", "__end__"]:
        """Route to tool execution or end based on LLM output."""
        last_message = state["messages"][-1]
        if last_message.tool_calls:
            return "tool_node"
        return END

    builder = StateGraph(MessagesState)
    builder.add_node("agent_node", agent_node)
    builder.add_node("tool_node", tool_node)

    builder.add_edge(START, "agent_node")
    builder.add_conditional_edges("agent_node", should_continue, ["tool_node", END])
    builder.add_edge("tool_node", "agent_node")

    checkpointer = SqliteSaver(sqlite3.connect(checkpoint_db_path, check_same_thread=False))
    return builder.compile(checkpointer=checkpointer)
