"""
Agent security: id allowlist, scoped subprocess environments and safe paths.

Only the router holds source-control posting tokens. Agents receive a
minimal environment built from a common allowlist plus their own entries,
with every token-looking variable stripped.
"""

import re
from typing import Dict, FrozenSet, List, Mapping, Optional

from ..logging_config import get_logger

logger = get_logger(__name__)

KNOWN_AGENT_IDS: FrozenSet[str] = frozenset({
    "semgrep",
    "reviewdog",
    "opencode",
    "pr_agent",
    "ai_semantic_review",
    "local_llm",
})

COMMON_AGENT_ENV_ALLOWLIST = (
    "PATH",
    "HOME",
    "TMPDIR",
    "TMP",
    "TEMP",
    "LANG",
    "LC_ALL",
    "TERM",
    "NO_COLOR",
)

_AZURE_OPENAI_KEYS = (
    "OPENAI_API_KEY",
    "AZURE_OPENAI_API_KEY",
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_DEPLOYMENT",
    "MODEL",
)

AGENT_ENV_ALLOWLIST: Dict[str, tuple] = {
    "semgrep": (),
    "reviewdog": (),
    "opencode": ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "MODEL"),
    "pr_agent": _AZURE_OPENAI_KEYS,
    "ai_semantic_review": _AZURE_OPENAI_KEYS + ("ANTHROPIC_API_KEY", "LLM_PROVIDER"),
    "local_llm": ("OLLAMA_BASE_URL", "OLLAMA_MODEL"),
}

_EXPLICIT_TOKENS = frozenset({
    "GITHUB_TOKEN",
    "GH_TOKEN",
    "GITHUB_PAT",
    "GH_PAT",
    "AZURE_DEVOPS_PAT",
    "ADO_TOKEN",
    "SYSTEM_ACCESSTOKEN",
    "REVIEWDOG_GITHUB_API_TOKEN",
})
_TOKEN_PATTERNS = (
    re.compile(r"^.*_TOKEN$", re.IGNORECASE),
    re.compile(r"^.*_PAT$", re.IGNORECASE),
)

_SAFE_DEFAULTS = {
    "PATH": "/usr/local/bin:/usr/bin:/bin",
    "HOME": "/tmp",
    "LANG": "en_US.UTF-8",
    "TERM": "dumb",
}


def is_known_agent_id(agent_id: str) -> bool:
    return agent_id in KNOWN_AGENT_IDS


def is_token_variable(name: str) -> bool:
    """True for variables that could let an agent post to the host directly."""
    if name in _EXPLICIT_TOKENS:
        return True
    return any(p.match(name) for p in _TOKEN_PATTERNS)


def strip_tokens_from_env(env: Mapping[str, Optional[str]]) -> Dict[str, str]:
    return {
        key: value
        for key, value in env.items()
        if value is not None and not is_token_variable(key)
    }


def build_agent_env(agent_id: str, env: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """
    Build the environment an agent may see.

    Raises:
        KeyError: for ids outside the allowlist; callers check
            is_known_agent_id first and never build an env for unknown ids
    """
    agent_keys = AGENT_ENV_ALLOWLIST[agent_id]
    clean = strip_tokens_from_env(env)

    scoped: Dict[str, str] = {}
    for key in COMMON_AGENT_ENV_ALLOWLIST:
        if key in clean:
            scoped[key] = clean[key]
    for key, default in _SAFE_DEFAULTS.items():
        scoped.setdefault(key, default)
    # Consistent parsing of tool output
    scoped["NO_COLOR"] = "1"

    for key in agent_keys:
        if key in clean:
            scoped[key] = clean[key]

    return scoped


MAX_PATH_LENGTH = 4096
MAX_SKIPPED_SAMPLES = 3
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def unsafe_path_reason(path: str) -> Optional[str]:
    """Why a diff path must not reach a tool's argv, or None if it may."""
    if not path:
        return "empty"
    if len(path) > MAX_PATH_LENGTH:
        return "too long"
    if path.startswith("-"):
        return "leading dash"
    if _CONTROL_CHARS.search(path):
        return "control character"
    return None


def filter_safe_paths(paths: List[str], agent_id: str) -> List[str]:
    """
    Drop paths that a command line tool could read as an option or that
    carry control characters. Skipped paths are logged with a few samples.
    """
    safe: List[str] = []
    samples: List[str] = []
    for path in paths:
        reason = unsafe_path_reason(path)
        if reason is None:
            safe.append(path)
            continue
        if len(samples) < MAX_SKIPPED_SAMPLES:
            shown = path if len(path) <= 40 else path[:37] + "..."
            samples.append(f"{shown!r} [{reason}]")

    skipped = len(paths) - len(safe)
    if skipped:
        more = f" (and {skipped - len(samples)} more)" if skipped > len(samples) else ""
        logger.warning(f"[{agent_id}] Skipped {skipped} unsafe path(s): {', '.join(samples)}{more}")
    return safe
