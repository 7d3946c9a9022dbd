"""Prefect flow wrapping a convergence loop run.

The flow exists for observability when a Prefect API is configured. All
logic lives in ConvergenceLoop; tests call run_requirement_graph.fn.
"""

import logging
import os
import threading
from dataclasses import replace
from pathlib import Path

from prefect import flow

from forgeloop.agents.claude import Agent, ClaudeAgent
from forgeloop.gates.base import Checker
from forgeloop.gates.checkers import default_registry
from forgeloop.gates.pipeline import Pipeline
from forgeloop.graph.reader import load_graph
from forgeloop.lib.config import load_config
from forgeloop.tracker.client import TrackerClient, TrackerError
from forgeloop.tracker.lifecycle import LifecycleSynchronizer
from forgeloop.tracker.linear import API_KEY_ENV, LinearClient
from .loop import ConvergenceLoop, LoopResult

logger = logging.getLogger(__name__)

AGENT_LOG_DIR = Path(".forge") / "agent-logs"


def make_synchronizer(tracker: TrackerClient | None = None) -> LifecycleSynchronizer | None:
    """Synchronizer over the given client, or Linear when LINEAR_API_KEY is set."""
    if tracker is not None:
        return LifecycleSynchronizer(tracker)
    if not os.environ.get(API_KEY_ENV):
        logger.debug(f"{API_KEY_ENV} not set, tracker sync disabled")
        return None
    try:
        return LifecycleSynchronizer(LinearClient())
    except TrackerError as e:
        logger.warning(f"Tracker sync disabled: {e}")
        return None


@flow(name="forge_run_requirement_graph", validate_parameters=False)
def run_requirement_graph(
    project_dir: Path,
    slug: str,
    max_iterations: int | None = None,
    agent: Agent | None = None,
    checkers: dict[str, Checker] | None = None,
    tracker: TrackerClient | None = None,
    stop_event: threading.Event | None = None,
) -> LoopResult:
    """Load config and graph for slug and run the convergence loop.

    Raises structural errors (ConfigValidationError, GraphLoadError,
    DependencyCycle, DanglingDependency) before any dispatch.
    """
    project_dir = Path(project_dir)
    config = load_config(project_dir)
    if max_iterations is not None:
        config = replace(config, max_iterations=max_iterations)

    project_graph = load_graph(project_dir, slug)
    stop_event = stop_event or threading.Event()

    loop = ConvergenceLoop(
        project_dir=project_dir,
        agent=agent or ClaudeAgent(log_dir=project_dir / AGENT_LOG_DIR),
        pipeline=Pipeline(checkers if checkers is not None else default_registry(), config, stop_event),
        config=config,
        stop_event=stop_event,
        synchronizer=make_synchronizer(tracker),
    )
    return loop.run(project_graph)
