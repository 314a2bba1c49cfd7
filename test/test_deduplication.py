"""
Unit tests for fingerprints and the two deduplication policies.
"""

import random

from conftest import make_finding
from review_router.schemas.common import Finding, Provenance, Severity
from review_router.supervisor.deduplication import (
    complete_key,
    count_by_severity,
    deduplicate_complete,
    deduplicate_partial,
    fingerprint_of,
    generate_fingerprint,
    group_by_file,
    partial_key,
    sort_findings,
)


class TestFingerprint:

    def test_stable_across_json_round_trip(self):
        finding = make_finding(metadata={"k": "v"})
        reloaded = Finding.model_validate_json(finding.model_dump_json())

        assert generate_fingerprint(reloaded) == generate_fingerprint(finding)

    def test_independent_of_source_agent(self):
        assert generate_fingerprint(make_finding(source_agent="semgrep")) == \
            generate_fingerprint(make_finding(source_agent="reviewdog"))

    def test_differs_by_rule_id(self):
        assert generate_fingerprint(make_finding(rule_id="a")) != generate_fingerprint(make_finding(rule_id="b"))

    def test_independent_of_provenance(self):
        finding = make_finding()
        assert generate_fingerprint(finding.model_copy(update={"provenance": Provenance.PARTIAL})) == generate_fingerprint(finding)

    def test_agent_fingerprint_preferred(self):
        assert fingerprint_of(make_finding(fingerprint="abc")) == "abc"
        assert len(fingerprint_of(make_finding())) == 32


class TestCompleteDedup:

    def test_cross_agent_duplicates_collapse(self):
        first = make_finding(source_agent="semgrep")
        second = make_finding(source_agent="reviewdog")

        assert deduplicate_complete([first, second]) == [first]

    def test_different_lines_kept(self):
        findings = [make_finding(line=11), make_finding(line=12)]
        assert len(deduplicate_complete(findings)) == 2

    def test_idempotent(self):
        findings = [
            make_finding(), make_finding(source_agent="reviewdog"),
            make_finding(line=13, message="other"), make_finding(line=None),
        ]
        once = deduplicate_complete(findings)

        assert deduplicate_complete(once) == once
        assert len(once) <= len(findings)


class TestPartialDedup:

    def test_same_agent_duplicates_collapse(self):
        finding = make_finding(source_agent="pr_agent")
        assert deduplicate_partial([finding, finding]) == [finding]

    def test_different_agents_kept(self):
        findings = [make_finding(source_agent="pr_agent"), make_finding(source_agent="opencode")]
        assert len(deduplicate_partial(findings)) == 2

    def test_idempotent(self):
        findings = [make_finding(source_agent="pr_agent")] * 3 + [make_finding(source_agent="opencode")]
        once = deduplicate_partial(findings)

        assert deduplicate_partial(once) == once
        assert len(once) == 2


class TestInputOrder:
    """Both policies keep the same set of keys whatever order findings arrive in."""

    def setup_method(self):
        self.findings = [
            make_finding(),
            make_finding(source_agent="reviewdog"),
            make_finding(source_agent="pr_agent"),
            make_finding(source_agent="pr_agent"),
            make_finding(line=13, message="other"),
            make_finding(line=13, message="other", source_agent="opencode"),
            make_finding(line=None),
            make_finding(file="lib/util.py", line=2, fingerprint="agent-fp"),
            make_finding(file="lib/util.py", line=2, fingerprint="agent-fp", source_agent="reviewdog"),
        ]
        self.orders = [
            self.findings,
            list(reversed(self.findings)),
            random.Random(7).sample(self.findings, len(self.findings)),
        ]

    def test_complete_keys_independent_of_order(self):
        results = [deduplicate_complete(order) for order in self.orders]

        key_sets = [{complete_key(f) for f in result} for result in results]
        assert key_sets[0] == key_sets[1] == key_sets[2]
        assert all(len(result) == len(key_sets[0]) for result in results)
        assert all(len(result) <= len(self.findings) for result in results)

    def test_partial_keys_independent_of_order(self):
        results = [deduplicate_partial(order) for order in self.orders]

        key_sets = [{partial_key(f) for f in result} for result in results]
        assert key_sets[0] == key_sets[1] == key_sets[2]
        assert all(len(result) == len(key_sets[0]) for result in results)
        assert all(len(result) <= len(self.findings) for result in results)

    def test_sorted_output_identical_across_orders(self):
        sorted_keys = [
            [complete_key(f) for f in sort_findings(deduplicate_complete(order))]
            for order in self.orders
        ]
        assert sorted_keys[0] == sorted_keys[1] == sorted_keys[2]


class TestOrdering:

    def test_sort_by_severity_file_line(self):
        findings = [
            make_finding(file="b.py", line=3, severity=Severity.INFO),
            make_finding(file="b.py", line=1, severity=Severity.ERROR),
            make_finding(file="a.py", line=9, severity=Severity.ERROR),
            make_finding(file="a.py", line=None, severity=Severity.ERROR),
        ]

        ordered = sort_findings(findings)

        assert [(f.file, f.line) for f in ordered] == [("a.py", None), ("a.py", 9), ("b.py", 1), ("b.py", 3)]

    def test_counts_and_grouping(self):
        findings = [
            make_finding(file="a.py", severity=Severity.ERROR),
            make_finding(file="a.py", severity=Severity.INFO),
            make_finding(file="b.py", severity=Severity.ERROR),
        ]

        assert count_by_severity(findings) == {"error": 2, "warning": 0, "info": 1}
        assert list(group_by_file(findings)) == ["a.py", "b.py"]
