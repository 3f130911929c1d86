"""Entry point for SiteWatch Agent: python -m sitewatch_agent"""

import asyncio
import logging
import os
import uuid
from functools import partial

from langchain_core.messages import HumanMessage

from sitewatch_agent.agent import create_agent
from sitewatch_agent.checker import CheckOrchestrator
from sitewatch_agent.fetcher import DEFAULT_TIMEOUT, fetch
from sitewatch_agent.models import Session
from sitewatch_agent.scheduler import start_polling
from sitewatch_agent.store import ResourceStore
from sitewatch_agent.tools import build_tools

DEFAULT_DB_PATH = "sitewatch_agent.db"
CHECKPOINT_DB_PATH = "sitewatch_agent_checkpoints.db"
DEFAULT_USER = "local"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("langchain").setLevel(logging.WARNING)

logger = logging.getLogger("sitewatch_agent")


def notify(message: str) -> None:
    """Show a check notification between chat turns."""
    print(f"\n[SiteWatch] {message}\n")


async def chat_loop(agent, config: dict) -> None:
    """Run the interactive chat loop."""
    print("SiteWatch Agent ready! Type your message (Ctrl+C to quit).\n")

    while True:
        try:
            user_input = await asyncio.to_thread(input, "You: ")
        except EOFError:
            break

        if not user_input.strip():
            continue

        try:
            response = await asyncio.to_thread(
                agent.invoke,
                {"messages": [HumanMessage(content=user_input)]},
                config,
            )

            last_message = response["messages"][-1]
            print(f"\nAgent: {last_message.content}\n")
        except Exception as e:
            error_msg = str(e)
            if "tool_use" in error_msg and "tool_result" in error_msg:
                # Corrupted checkpoint, start a fresh thread
                config["configurable"]["thread_id"] = uuid.uuid4().hex
                print("\nAgent: Sorry, I had an issue with my memory. Let me start fresh. Please try again.\n")
            else:
                print(f"\nAgent: Sorry, I encountered an error: {error_msg}\n")


async def main() -> None:
    """Initialize and run SiteWatch Agent."""
    db_path = os.environ.get("SITEWATCH_DB_PATH", DEFAULT_DB_PATH)
    checkpoint_path = os.environ.get("SITEWATCH_CHECKPOINT_PATH", CHECKPOINT_DB_PATH)
    session = Session(username=os.environ.get("SITEWATCH_USER", DEFAULT_USER))
    timeout = float(os.environ.get("SITEWATCH_FETCH_TIMEOUT", DEFAULT_TIMEOUT))

    store = ResourceStore(db_path)
    store.connect()
    unsubscribe = store.subscribe(
        session,
        lambda resources: logger.debug("Tracking %d websites", len(resources)),
    )

    orchestrator = CheckOrchestrator(store, notifier=notify, timeout=timeout)
    agent = create_agent(
        tools=build_tools(store, orchestrator, session, fetch_func=partial(fetch, timeout=timeout)),
        checkpoint_db_path=checkpoint_path,
    )

    # Each session gets a fresh thread to avoid corrupted checkpoint issues
    config = {"configurable": {"thread_id": uuid.uuid4().hex}}

    poller_task = asyncio.create_task(start_polling(orchestrator, session))

    try:
        await chat_loop(agent, config)
    except KeyboardInterrupt:
        print("\nGoodbye!")
    finally:
        poller_task.cancel()
        try:
            await poller_task
        except asyncio.CancelledError:
            pass
        unsubscribe()
        store.close()


if __name__ == "__main__":
    asyncio.run(main())
