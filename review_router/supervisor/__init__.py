"""
Supervisor Module

Runs agents and reconciles their results:
- orchestrator: passes, gates and failure classification
- line_resolver: line normalization and drift signals
- deduplication: complete and partial dedup
- gating: pass/fail verdict
- workflow: the LangGraph pipeline tying them together
"""
