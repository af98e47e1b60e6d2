"""deepresearch - two-phase web research with human approval

Simple CLI for running a research session in the terminal.
"""

import argparse
import asyncio

from deepresearch.config import settings
from deepresearch.errors import InvalidResumeState, ProviderError
from deepresearch.llm_client import CompletionService
from deepresearch.models.research import SessionState
from deepresearch.services.engine import ResearchEngine
from deepresearch.services.session_store import get_session_store


async def _ask(prompt: str) -> str:
    return (await asyncio.to_thread(input, f"{prompt} ")).strip()


async def _print_progress(engine: ResearchEngine, session_id: str) -> None:
    async for event in engine.subscribe(session_id, replay=True):
        event_type = event.event.value
        data = event.data

        if event_type == "status":
            print(f"\n[~] {data.get('message')} ({data.get('step')}/{data.get('total_steps')})")

        elif event_type == "progress":
            print(".", end="", flush=True)

        elif event_type == "queries_planned":
            queries = data.get("queries", [])
            print(f"\n[*] {data.get('phase')} queries ({len(queries)}):")
            for i, query in enumerate(queries, 1):
                print(f"  {i}. {query}")

        elif event_type == "search_result":
            if data.get("error"):
                print(f"  [-] {data.get('query')}: {data.get('error')}")
            else:
                print(f"  [+] {data.get('query')}: {len(data.get('results', []))} results")

        elif event_type == "learning_extracted":
            print(f"  [+] {data.get('learning', '')[:100]}")

        elif event_type == "error":
            print(f"\n[!] Error: {data.get('message', 'Unknown error')}")

    await engine.wait(session_id)


async def run_research(
    topic: str | None,
    model: str | None = None,
    auto_approve: bool = False,
    write_report: bool = True,
):
    """Drive one session through topic intake, research and approval."""
    engine = ResearchEngine(
        get_session_store(settings),
        completion=CompletionService(model=model),
    )
    try:
        session_id = await engine.start_session()
        while True:
            session = await engine.get_session(session_id)

            if session.state == SessionState.AWAITING_TOPIC:
                if not topic:
                    topic = await _ask(session.prompt or "Topic:")
                try:
                    await engine.resume(session_id, {"query": topic})
                except InvalidResumeState as e:
                    print(f"[!] {e}")
                    topic = None
                    continue
                topic = None
                print(f"Research session: {session_id}")
                print("-" * 50)
                await _print_progress(engine, session_id)

            elif session.state == SessionState.AWAITING_APPROVAL:
                print(f"\n\n{session.summary}\n")
                if auto_approve:
                    approved = True
                else:
                    answer = await _ask(session.prompt or "Approve? [y/n]")
                    approved = answer.lower() in ("y", "yes")
                await engine.resume(session_id, {"approved": approved})

            else:
                break

        if session.state == SessionState.REJECTED:
            print("\n[!] Research rejected too many times, giving up.")
            return

        print("\n[*] Research approved!")
        if not write_report:
            return
        try:
            report = await engine.generate_report(session_id)
        except ProviderError as e:
            print(f"\n[!] Report generation failed: {e}")
            return
        print(f"\n{'='*50}")
        print("REPORT:")
        print(f"{'='*50}")
        print(report)
    finally:
        await engine.aclose()


def main():
    parser = argparse.ArgumentParser(description="deepresearch - two-phase research tool")
    parser.add_argument("--topic", "-t", help="Research topic (prompted for when omitted)")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--auto-approve", action="store_true", help="Accept the first research pass")
    parser.add_argument("--no-report", action="store_true", help="Skip report synthesis")

    args = parser.parse_args()

    asyncio.run(
        run_research(
            args.topic,
            model=args.model,
            auto_approve=args.auto_approve,
            write_report=not args.no_report,
        )
    )


if __name__ == "__main__":
    main()
