"""
forge run - Drive the convergence loop over a requirement graph.
"""

import signal
import threading
from pathlib import Path

from forgeloop.lib.config import ForgeConfig
from forgeloop.runner.flows import run_requirement_graph


def cmd_run(args, project_dir: Path, config: ForgeConfig) -> int:
    """Run every requirement of --prd. 0 when all succeeded, 1 otherwise."""
    stop_event = threading.Event()

    def request_stop(signum, frame):
        print("\nStop requested; finishing the current step...")
        stop_event.set()

    previous = signal.signal(signal.SIGINT, request_stop)
    try:
        result = run_requirement_graph(
            project_dir,
            args.prd,
            max_iterations=args.max_iterations,
            stop_event=stop_event,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    print(f"Requirements for {args.prd}:")
    for rid, state in result.states.items():
        iterations = result.iterations(rid)
        suffix = f" ({iterations} iteration{'' if iterations == 1 else 's'})" if iterations else ""
        print(f"  {rid}: {state.value}{suffix}")
    if result.cancelled:
        print("Run was cancelled.")

    return 0 if result.succeeded else 1
