"""
forge check - Pre-commit gate: require a recent passing verification.
"""

from pathlib import Path

from forgeloop.lib.config import ForgeConfig
from forgeloop.lib.report import check_verify_cache


def cmd_check(args, project_dir: Path, config: ForgeConfig) -> int:
    check = check_verify_cache(project_dir, config.verify_freshness_ms)
    if not check.allowed:
        print(f"BLOCKED: {check.reason}")
        return 1
    print("Verification is fresh and passing.")
    return 0
