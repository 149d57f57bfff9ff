"""Company Intel - discovery, scraping and intelligence extraction.

Simple CLI for running the pipeline against one domain.
"""

import argparse
import asyncio

from company_intel.config import settings
from company_intel.discovery.executor import DiscoveryExecutor
from company_intel.models.events import StreamEvent
from company_intel.scraping.registry import build_default_registry
from company_intel.services import streaming
from company_intel.services.pipeline import IntelligencePipeline
from company_intel.services.sessions import build_session_store, get_or_create_session


def print_event(event: StreamEvent) -> None:
    event_type = event.event.value
    data = event.data

    if event_type == "started":
        print(f"[*] {data.get('message')}")

    elif event_type == "progress":
        print(f"  [{data.get('current')}/{data.get('total')}] {data.get('message')}")

    elif event_type == "data":
        urls = data.get("payload", {}).get("urls", [])
        print(f"\n[+] {len(urls)} URLs discovered")
        for url in urls[:20]:
            print(f"    {url}")
        if len(urls) > 20:
            print(f"    ... {len(urls) - 20} more")

    elif event_type == "complete":
        summary = data.get("summary", {})
        print("\n[*] Complete!")
        for key, value in summary.items():
            if isinstance(value, dict):
                print(f"   {key}:")
                for name, detail in value.items():
                    print(f"     - {name}: {detail}")
            else:
                print(f"   {key}: {value}")

    elif event_type == "error":
        retriable = " (retriable)" if data.get("retriable") else ""
        if data.get("terminal"):
            print(f"\n[!] Error{retriable}: {data.get('message', 'Unknown error')}")
        else:
            where = data.get("url") or data.get("stage", "")
            print(f"  [!] {where}{retriable}: {data.get('message')}")


async def run(domain: str, company: str, max_urls: int | None, discover_only: bool):
    """Run discovery, or the full pipeline, for one domain."""
    store = build_session_store(settings)
    session = await get_or_create_session(store, company, domain)
    print(f"Session {session.id} for {session.domain}")
    print("-" * 50)

    if discover_only:
        executor = DiscoveryExecutor(session_store=store)

        async def work(report, report_error):
            return await executor.execute(
                session.domain,
                session_id=session.id,
                max_urls=max_urls,
                on_progress=report,
                on_error=report_error,
            )

        events = streaming.stream(
            work,
            session_id=session.id,
            phase="discovery",
            message=f"Discovering pages on {session.domain}",
            summarize=lambda result: result.summary(),
            result_payload=lambda result: {"urls": result.urls},
        )
    else:
        pipeline = IntelligencePipeline(registry=build_default_registry(settings), store=store)

        async def work(report, report_error):
            return await pipeline.run(
                session.id, max_urls=max_urls, on_progress=report, on_error=report_error
            )

        events = streaming.stream(
            work,
            session_id=session.id,
            phase="pipeline",
            message=f"Gathering intelligence for {session.domain}",
            summarize=lambda result: result.summary(),
        )

    async for event in events:
        print_event(event)


def main():
    parser = argparse.ArgumentParser(description="Company Intel pipeline")
    parser.add_argument("--domain", "-d", required=True, help="Target domain, e.g. example.com")
    parser.add_argument("--company", "-c", help="Company name (default: the domain)")
    parser.add_argument("--max-urls", type=int, help="Cap on discovered URLs")
    parser.add_argument("--discover-only", action="store_true", help="Stop after discovery")

    args = parser.parse_args()

    asyncio.run(run(args.domain, args.company or args.domain, args.max_urls, args.discover_only))


if __name__ == "__main__":
    main()
