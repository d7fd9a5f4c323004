"""Researcher - ReAct web research agent

Simple CLI for running research queries.
"""

import argparse
import asyncio
import sys

from researcher.config import settings
from researcher.errors import ConfigurationError, QuotaExceeded, ResearchError
from researcher.models.trace import TraceStep
from researcher.services.broadcaster import TraceBroadcaster
from researcher.services.quota import QuotaTracker
from researcher.services.research_service import ResearchService
from researcher.services.session_store import InMemorySessionStore


def print_step(step: TraceStep) -> None:
    tool = f" [{step.tool.value}]" if step.tool else ""
    print(f"\n[{step.index + 1}]{tool} {step.action}")
    print(f"    Thought: {step.thought}")
    print(f"    Observation: {step.observation}")
    if step.reflection:
        preview = " ".join(step.reflection.split())
        print(f"    Reflection: {preview[:300]}{'...' if len(preview) > 300 else ''}")


async def run_research(query: str, model: str | None = None) -> int:
    """Run research on the given query."""
    print(f"Research query: {query}")
    print("-" * 50)

    service = ResearchService(
        store=InMemorySessionStore(),
        broadcaster=TraceBroadcaster(max_queue=settings.subscriber_queue_size),
        quota=QuotaTracker(settings.daily_completion_limit),
    )

    try:
        session_id = await service.start_query(query, model=model)
        async for step in service.stream_trace(session_id):
            print_step(step)
        await service.wait_for_background_runs()
        session = await service.get_session(session_id)
    except ConfigurationError as e:
        print(f"\n[!] Configuration error: {e.message}")
        return 2
    except QuotaExceeded as e:
        print(f"\n[!] {e.message}")
        return 3

    if session.progress.error:
        print(f"\n[!] Error: {session.progress.error}")
        return 3 if service.quota.remaining == 0 else 1

    print(f"\n\n[*] Research Complete!")
    print(f"   Steps: {len(session.response.trace_steps)}")
    print(f"   Sources: {len(session.response.sources)}")
    print(f"\n{'='*50}")
    print("ANSWER:")
    print(f"{'='*50}")
    print(session.response.final_output)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Researcher - ReAct web research agent")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")

    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(run_research(args.query, args.model)))
    except ResearchError as e:
        print(f"\n[!] Error: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
