"""
Build the agent prompt for one requirement iteration.

Templates live in forgeloop/prompts/ as markdown with str.format()
placeholders. HTML comments are notes for maintainers and never reach
the agent.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

from forgeloop.graph.models import Requirement
from forgeloop.lib.report import format_failures
from forgeloop.lib.types import PipelineResult

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

FIRST_ITERATION = "First iteration: start from scratch."

_COMMENT = re.compile(r"<!--.*?-->\s*", re.DOTALL)


class PromptError(Exception):
    """A template is missing or needs a value nobody supplied."""


@lru_cache(maxsize=16)
def load_template(name: str) -> str:
    path = PROMPTS_DIR / f"{name}.md"
    if not path.is_file():
        raise PromptError(f"Prompt template '{name}' not found at {path}")
    logger.debug(f"Loaded prompt template {name}")
    return _COMMENT.sub("", path.read_text()).lstrip()


def render_template(name: str, /, **values) -> str:
    """Fill a template. `name` is positional so templates may use {name} themselves."""
    try:
        return load_template(name).format(**values)
    except KeyError as e:
        raise PromptError(f"Missing required variable {e} in prompt '{name}' "
                          f"(have: {', '.join(sorted(values)) or 'nothing'})") from e


def format_dependencies(dependencies: list[Requirement]) -> str:
    if not dependencies:
        return ""
    blocks = "\n\n".join(f"### {dep.id}: {dep.title}\n{dep.body}" for dep in dependencies)
    return f"## Completed Dependencies\n\n{blocks}\n\n"


def build_requirement_prompt(
    requirement: Requirement,
    overview: str,
    dependencies: list[Requirement],
    previous: PipelineResult | None = None,
    iteration: int = 1,
    max_iterations: int = 1,
) -> str:
    """
    Render the requirement prompt.

    `previous` is the last pipeline result; when it failed, its formatted
    failures become the Current State section.
    """
    if previous is not None and not previous.passed:
        current_state = (
            "The previous attempt did not pass verification. Fix these failures:\n\n"
            + format_failures(previous)
        )
    else:
        current_state = FIRST_ITERATION

    return render_template(
        "requirement",
        requirement_id=requirement.id,
        requirement_title=requirement.title,
        overview=overview,
        dependencies_section=format_dependencies(dependencies),
        body=requirement.body,
        acceptance="\n".join(f"- {a}" for a in requirement.acceptance) or "- (none declared)",
        creates=", ".join(sorted(requirement.creates)) or "none",
        modifies=", ".join(sorted(requirement.modifies)) or "none",
        current_state=current_state,
        iteration=iteration,
        max_iterations=max_iterations,
    )
