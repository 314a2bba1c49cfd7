"""
Semgrep Agent

Static analysis with `semgrep scan --config=auto` over the changed files.
No inference cost, so passes made of it are never budget gated.
"""

import asyncio
import json
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from ..logging_config import get_logger
from ..schemas.common import FailureStage, Finding, Severity
from ..services.security import filter_safe_paths
from .base_agent import AgentContext, AgentError, ReviewAgent

logger = get_logger(__name__)

SUPPORTED_EXTENSIONS = (
    ".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".java", ".rb",
    ".php", ".c", ".cpp", ".cs", ".rs", ".swift", ".kt", ".scala",
)

SEVERITY_MAP = {
    "ERROR": Severity.ERROR,
    "WARNING": Severity.WARNING,
}


def map_severity(semgrep_severity: str) -> Severity:
    return SEVERITY_MAP.get((semgrep_severity or "").upper(), Severity.INFO)


class SemgrepAgent(ReviewAgent):
    """Runs semgrep on supported changed files."""

    uses_paid_inference = False

    @property
    def id(self) -> str:
        return "semgrep"

    @property
    def name(self) -> str:
        return "Semgrep"

    def _supported_paths(self, context: AgentContext) -> List[str]:
        return [
            f.path for f in context.reviewable_files()
            if f.path.endswith(SUPPORTED_EXTENSIONS)
        ]

    def supports(self, context: AgentContext) -> bool:
        return bool(self._supported_paths(context))

    async def _run_process(
        self, argv: List[str], cwd: str, env: Dict[str, str]
    ) -> Tuple[int, str, str]:
        """Run a subprocess, killing it if the agent is cancelled."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise AgentError(f"semgrep not installed: {e}", FailureStage.PREFLIGHT) from e

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        return (
            proc.returncode or 0,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def _execute(self, context: AgentContext) -> List[Finding]:
        paths = filter_safe_paths(self._supported_paths(context), self.id)
        if not paths:
            # semgrep given no paths scans the whole checkout
            logger.info("No scannable paths left for semgrep")
            return []
        argv = ["semgrep", "scan", "--config=auto", "--json", "--", *paths]

        returncode, stdout, stderr = await self._run_process(argv, context.repo_path, context.env)

        # semgrep exits non-zero when it finds issues but still prints JSON
        if not stdout.strip():
            raise AgentError(
                f"semgrep exited {returncode}: {stderr.strip()[:500] or 'no output'}",
                FailureStage.EXEC,
            )

        try:
            parsed = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise AgentError(f"could not parse semgrep output: {e.msg}", FailureStage.POSTPROCESS) from e

        if not isinstance(parsed, dict):
            raise AgentError("semgrep output is not a JSON object", FailureStage.POSTPROCESS)

        try:
            findings = self._to_findings(parsed)
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise AgentError(f"unexpected semgrep result shape: {e}", FailureStage.POSTPROCESS) from e

        if returncode != 0 and not findings and parsed.get("errors"):
            raise AgentError(
                f"semgrep exited {returncode} with {len(parsed['errors'])} errors",
                FailureStage.EXEC,
            )

        logger.info(f"Semgrep reported {len(findings)} findings on {len(paths)} files")
        return findings

    def _to_findings(self, parsed: Dict[str, Any]) -> List[Finding]:
        findings = []
        for result in parsed.get("results", []):
            extra = result.get("extra", {})
            findings.append(Finding(
                severity=map_severity(extra.get("severity", "")),
                file=result["path"],
                line=result.get("start", {}).get("line"),
                end_line=result.get("end", {}).get("line"),
                message=extra.get("message", "").strip() or result.get("check_id", "semgrep"),
                suggestion=extra.get("fix"),
                rule_id=result.get("check_id"),
                source_agent=self.id,
            ))
        return findings
