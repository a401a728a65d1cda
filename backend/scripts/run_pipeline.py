#!/usr/bin/env python3
"""
Run one matching pipeline from a YAML run configuration.

Usage:
    python scripts/run_pipeline.py config.yaml [--db path.sqlite3] [--clear-matches]

Ctrl-C requests a cooperative stop; a second Ctrl-C aborts.
"""
from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from queue import Empty, Queue

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from translationmatcher.config_store import dump_pipeline_config, load_pipeline_config
from translationmatcher.pipeline.events import LogEvent
from translationmatcher.pipeline.orchestrator import PipelineOrchestrator, RunState
from translationmatcher.settings import Settings

EXIT_CODES = {
    RunState.COMPLETED: 0,
    RunState.FAILED: 1,
    RunState.STOPPED: 2,
}


def format_event(event: LogEvent) -> str:
    stamp = datetime.fromtimestamp(event.timestamp).strftime("%H:%M:%S")
    stage = f"[{event.stage}] " if event.stage else ""
    return f"{stamp} {event.level.upper():7} {stage}{event.message}"


def follow_log(
    orchestrator: PipelineOrchestrator,
    queue: Queue,
    write: Callable[[str], None] = print,
) -> None:
    """Write log events until the run ends, then drain what is still queued.

    The final state event is published after the state flips, so the queue is
    emptied once the worker thread has exited.
    """
    interrupted = False
    while True:
        try:
            event = queue.get(timeout=0.5)
        except Empty:
            if not orchestrator.status().is_running:
                break
            continue
        except KeyboardInterrupt:
            if interrupted:
                raise
            interrupted = True
            orchestrator.stop()
            continue
        if event is None:
            return
        write(format_event(event))

    orchestrator.join()
    while True:
        try:
            event = queue.get_nowait()
        except Empty:
            return
        if event is None:
            return
        write(format_event(event))


def run(config_path: Path, *, db_path: Path | None, clear_matches: bool, no_citations: bool) -> RunState:
    settings = Settings()
    if no_citations:
        settings.enable_citations = False
    config = load_pipeline_config(config_path)
    if clear_matches:
        config.clear_previous_matches = True
    print(dump_pipeline_config(config))

    orchestrator = PipelineOrchestrator(settings, db_path=db_path)
    queue = orchestrator.log_stream.subscribe()
    orchestrator.start_background(config)

    follow_log(orchestrator, queue, write=lambda line: print(line, flush=True))

    orchestrator.join()
    orchestrator.log_stream.unsubscribe(queue)
    return orchestrator.state


def main():
    parser = argparse.ArgumentParser(description="Match translated articles to their source texts")
    parser.add_argument("config", type=Path, help="YAML run configuration")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database (default: data dir)")
    parser.add_argument("--clear-matches", action="store_true", help="Delete matches from earlier runs first")
    parser.add_argument("--no-citations", action="store_true", help="Skip the citation pass")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging on stderr")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    state = run(args.config, db_path=args.db, clear_matches=args.clear_matches, no_citations=args.no_citations)
    print(f"\nFinal state: {state.value}")
    sys.exit(EXIT_CODES.get(state, 1))


if __name__ == "__main__":
    main()
