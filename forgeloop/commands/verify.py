"""
forge verify - Run the gate pipeline against the project tree.
"""

import logging
import subprocess
from pathlib import Path

from forgeloop.gates import Pipeline, default_registry
from forgeloop.lib.config import ForgeConfig
from forgeloop.lib.report import format_failures, render_report, write_verify_cache

logger = logging.getLogger(__name__)


def current_branch(project_dir: Path) -> str | None:
    result = subprocess.run(
        ["git", "-C", str(project_dir), "branch", "--show-current"],
        capture_output=True, text=True
    )
    branch = result.stdout.strip() if result.returncode == 0 else ""
    return branch or None


def cmd_verify(args, project_dir: Path, config: ForgeConfig) -> int:
    """Run gates, print the verdict, write the verify cache. 0 on PASSED, 1 on FAILED."""
    gates = [g.strip() for g in args.gates.split(",") if g.strip()] if args.gates else list(config.gates)

    pipeline = Pipeline(default_registry(), config)
    result = pipeline.run(project_dir, gates)

    try:
        branch = current_branch(project_dir)
    except OSError:
        branch = None
    write_verify_cache(project_dir, result, branch=branch)

    if args.json:
        print(result.to_json())
    else:
        print(render_report(result))
        if not result.passed:
            print()
            print(format_failures(result))

    return 0 if result.passed else 1
