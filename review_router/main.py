"""
review-router entry point.

Loads the review config, parses the change's unified diff, checks the budget,
runs the review workflow and reports. The exit status is the only signal CI
consumes: 0 when the review completed and gating passed, 1 otherwise.
"""

import argparse
import asyncio
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, TextIO

from .config import get_settings, hash_config, load_config
from .errors import ConfigValidationError
from .logging_config import LogContext, get_logger, log_with_data, set_run_id, setup_logging
from .report.formats import ReportingAdapter, TerminalReporter
from .services.budget import (
    BudgetContext,
    MonthlyUsage,
    check_budget,
    check_monthly_budget,
    combine_budget_checks,
    estimate_tokens,
)
from .services.cache import ResultCache
from .subagents import AgentRegistry, default_registry
from .subagents.base_agent import AgentContext
from .supervisor.orchestrator import ExecuteOptions
from .supervisor.workflow import ReviewWorkflow
from .utils.diff_parser import count_diff_lines, parse_unified_diff

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1


async def run_review(
    config_path: Optional[str] = None,
    repo_path: str = ".",
    diff_text: str = "",
    pr_number: Optional[int] = None,
    head_sha: Optional[str] = None,
    base_sha: Optional[str] = None,
    dry_run: bool = False,
    registry: Optional[AgentRegistry] = None,
    reporter: Optional[ReportingAdapter] = None,
    env: Optional[Mapping[str, str]] = None,
    now: Optional[datetime] = None,
    cache: Optional[ResultCache] = None,
    monthly_usage: Optional[MonthlyUsage] = None,
) -> int:
    """
    Run one review and return the process exit status.

    Returns:
        1 if the config is invalid, a required pass aborted, or gating
        failed; 0 otherwise
    """
    settings = get_settings()
    set_run_id(uuid.uuid4().hex[:12])

    try:
        config = load_config(config_path or settings.config_path)
    except ConfigValidationError as e:
        log_with_data(logger, logging.ERROR, f"Invalid review config: {e}", {"errors": e.errors})
        return EXIT_FAILED

    files = parse_unified_diff(diff_text)
    budget_context = BudgetContext(
        file_count=len(files),
        diff_lines=count_diff_lines(files),
        estimated_tokens=estimate_tokens(diff_text),
    )
    per_pr_check = check_budget(budget_context, config.limits)
    if monthly_usage is None:
        monthly_usage = MonthlyUsage(spent_usd=settings.monthly_spent_usd)
    monthly_check = check_monthly_budget(
        monthly_usage, per_pr_check.estimated_cost_usd, config.limits.monthly_budget_usd
    )
    budget_check = combine_budget_checks(per_pr_check, monthly_check)
    log_with_data(logger, logging.INFO, "Budget checked", {
        "files": budget_context.file_count,
        "diff_lines": budget_context.diff_lines,
        "estimated_tokens": budget_context.estimated_tokens,
        "estimated_cost_usd": budget_check.estimated_cost_usd,
        "monthly_spent_usd": monthly_usage.spent_usd,
        "allowed": budget_check.allowed,
        "reason": budget_check.reason,
    })

    if dry_run:
        for pass_config in config.passes:
            state = "enabled" if pass_config.enabled else "disabled"
            kind = "required" if pass_config.required else "optional"
            logger.info(f"Pass '{pass_config.name}' ({state}, {kind}): {', '.join(pass_config.agents)}")
        logger.info("Dry run: no agents executed")
        return EXIT_OK

    if cache is None and config.cache.enabled:
        cache = ResultCache(settings.cache_dir, default_ttl=config.cache.ttl_seconds)

    process_env = dict(env if env is not None else os.environ)
    context = AgentContext(
        repo_path=repo_path,
        files=files,
        diff_content=diff_text,
        config=config,
        now=now or datetime.now(timezone.utc),
        env=process_env,
        pr_number=pr_number,
        head_sha=head_sha,
        base_sha=base_sha,
        provider=config.models.provider or settings.llm_provider,
        model=config.models.default or settings.llm_model,
    )

    workflow = ReviewWorkflow(
        config,
        registry or default_registry(),
        budget_check,
        options=ExecuteOptions(
            pr_number=pr_number,
            head_sha=head_sha,
            config_hash=hash_config(config),
        ),
        cache=cache,
        router_env=process_env,
    )
    async with LogContext(logger, "Review run", pr_number=pr_number, files=len(files)):
        outcome = await workflow.run(context)

    if cache is not None:
        pruned = cache.cleanup_expired()
        log_with_data(logger, logging.INFO, "Result cache usage", {
            **cache.stats.to_dict(),
            "entries": len(cache),
            "pruned": pruned,
        })

    if outcome.abort is not None:
        logger.error(f"Review aborted: {outcome.abort.reason}")
        return EXIT_FAILED

    (reporter or TerminalReporter(config.reporting)).report(outcome.report)

    if not outcome.report.gating_verdict.passed:
        return EXIT_FAILED
    return EXIT_OK


def _read_diff(path: Optional[str], stdin: TextIO) -> str:
    if path is None or path == "-":
        return stdin.read()
    return Path(path).read_text(encoding="utf-8")


def main():
    """Main entry point with CLI interface"""
    parser = argparse.ArgumentParser(
        description="Run configured review agents on a change and reconcile their findings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  git diff origin/main...HEAD | review-router --pr 42 --head $(git rev-parse HEAD)
  review-router --diff change.diff --config .review-router.yml --dry-run
        """,
    )
    parser.add_argument('--config', '-c', help='Review config file (default: .review-router.yml)')
    parser.add_argument('--repo', '-r', default='.', help='Repository checkout (default: .)')
    parser.add_argument('--diff', '-d', help='Unified diff file, or - for stdin (default: stdin)')
    parser.add_argument('--pr', type=int, help='Pull request number, enables the result cache')
    parser.add_argument('--head', help='Head commit SHA')
    parser.add_argument('--base', help='Base commit SHA')
    parser.add_argument('--dry-run', action='store_true', help='Check config and budget without running agents')

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    try:
        diff_text = _read_diff(args.diff, sys.stdin)
    except OSError as e:
        logger.error(f"Cannot read diff: {e}")
        sys.exit(EXIT_FAILED)

    status = asyncio.run(run_review(
        config_path=args.config,
        repo_path=args.repo,
        diff_text=diff_text,
        pr_number=args.pr,
        head_sha=args.head,
        base_sha=args.base,
        dry_run=args.dry_run,
    ))
    sys.exit(status)


if __name__ == "__main__":
    main()
