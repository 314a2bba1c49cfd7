"""
Unit tests for unified diff parsing.
"""

from conftest import SAMPLE_DIFF
from review_router.schemas.diff import FileStatus
from review_router.utils.diff_parser import (
    count_diff_lines,
    normalize_path,
    parse_diff_hunks,
    parse_unified_diff,
)


MULTI_FILE_DIFF = SAMPLE_DIFF + """diff --git a/docs/old.md b/docs/old.md
deleted file mode 100644
index 3333333..0000000
--- a/docs/old.md
+++ /dev/null
@@ -1,2 +0,0 @@
-# Old
-text
diff --git a/lib/util.py b/lib/helpers.py
similarity index 90%
rename from lib/util.py
rename to lib/helpers.py
index 4444444..5555555 100644
--- a/lib/util.py
+++ b/lib/helpers.py
@@ -1,2 +1,2 @@
-def util():
+def helper():
     pass
diff --git a/assets/logo.png b/assets/logo.png
new file mode 100644
index 0000000..6666666
Binary files /dev/null and b/assets/logo.png differ
"""


class TestParseHunks:

    def test_added_and_context_lines(self):
        hunks = parse_diff_hunks(SAMPLE_DIFF)

        assert len(hunks) == 1
        assert hunks[0].added_lines == [11, 12, 13, 14]
        assert hunks[0].context_lines == [10, 15]
        assert hunks[0].new_side_lines() == [10, 11, 12, 13, 14, 15]
        assert hunks[0].new_side_lines(additions_only=True) == [11, 12, 13, 14]

    def test_no_newline_marker_ignored(self):
        patch = "@@ -1 +1 @@\n-old\n\\ No newline at end of file\n+new\n\\ No newline at end of file\n"
        hunks = parse_diff_hunks(patch)

        assert hunks[0].added_lines == [1]

    def test_empty(self):
        assert parse_diff_hunks("") == []


class TestParseUnifiedDiff:

    def setup_method(self):
        self.files = {f.path: f for f in parse_unified_diff(MULTI_FILE_DIFF)}

    def test_files_detected(self):
        assert list(self.files) == ["src/app.py", "docs/old.md", "lib/helpers.py", "assets/logo.png"]

    def test_statuses(self):
        assert self.files["src/app.py"].status == FileStatus.MODIFIED
        assert self.files["docs/old.md"].status == FileStatus.DELETED
        assert self.files["lib/helpers.py"].status == FileStatus.RENAMED
        assert self.files["lib/helpers.py"].old_path == "lib/util.py"
        assert self.files["assets/logo.png"].status == FileStatus.ADDED

    def test_binary(self):
        assert self.files["assets/logo.png"].is_binary
        assert self.files["assets/logo.png"].hunks == []

    def test_line_counts(self):
        app = self.files["src/app.py"]
        assert (app.additions, app.deletions) == (4, 1)
        assert self.files["docs/old.md"].deletions == 2
        assert count_diff_lines(list(self.files.values())) == 5 + 2 + 2


class TestNormalizePath:

    def test_prefixes(self):
        assert normalize_path("a/src/app.py") == "src/app.py"
        assert normalize_path("b/src/app.py") == "src/app.py"
        assert normalize_path("./src/app.py") == "src/app.py"
        assert normalize_path("/src/app.py") == "src/app.py"
        assert normalize_path(" src/app.py ") == "src/app.py"

    def test_only_one_diff_prefix_stripped(self):
        assert normalize_path("a/b/file.py") == "b/file.py"
