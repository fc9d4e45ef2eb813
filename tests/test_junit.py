"""Tests for reporting.junit: the launcher results file."""

import pytest
from lxml import etree

from mbt_ci_bridge.reporting.junit import (
    STDIO_HALF_SIZE,
    CaseResult,
    SuiteResult,
    TestResult,
    parse_result,
    parse_suites,
    possibly_trim_stdio,
)

RESULTS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<testsuites>
  <testsuite name="Suite" package="pkg" time="12.5" timestamp="t1" id="0">
    <testcase name="Checkout" classname="Suite" time="1,000.5" runId="1001">
      <system-out>started __octane_description_start__ Buys things __octane_description_end__</system-out>
    </testcase>
    <testcase name="Pay" time="2" runId="1002">
      <failure message="Step failed">stack line</failure>
    </testcase>
    <testcase name="mod.Skipped" runId="x">
      <skipped message="not today"/>
    </testcase>
  </testsuite>
</testsuites>
"""


@pytest.fixture
def results_file(tmp_path):
    path = tmp_path / "results.xml"
    path.write_text(RESULTS_XML, encoding="utf-8")
    return path


class TestPossiblyTrimStdio:
    """Tests for possibly_trim_stdio()."""

    def test_short_text_untouched(self):
        assert possibly_trim_stdio("abc", False, False) == "abc"

    def test_keep_long_stdio(self):
        text = "x" * 5000
        assert possibly_trim_stdio(text, True, False) == text

    def test_long_text_trimmed(self):
        text = "a" * STDIO_HALF_SIZE + "m" * 10 + "z" * STDIO_HALF_SIZE

        trimmed = possibly_trim_stdio(text, False, False)

        assert trimmed.startswith("a" * STDIO_HALF_SIZE + "\n...[truncated 10 chars]...")
        assert trimmed.endswith("z" * STDIO_HALF_SIZE)

    def test_failed_case_keeps_more(self):
        text = "x" * 5000
        assert possibly_trim_stdio(text, False, True) == text

    def test_none(self):
        assert possibly_trim_stdio(None, False, False) is None


class TestParseSuites:
    """Tests for parse_suites()."""

    def test_suite_and_cases(self, results_file):
        [suite] = parse_suites(results_file)

        assert suite.name == "pkg.Suite"
        assert suite.duration == 12.5
        assert [c.test_name for c in suite.cases] == ["Checkout", "Pay", "Skipped"]
        checkout, pay, skipped = suite.cases
        assert checkout.duration == 1000.5
        assert checkout.run_id == 1001
        assert "Buys things" in checkout.stdout
        assert pay.class_name == "pkg.Suite"
        assert pay.error_details == "Step failed"
        assert pay.error_stack_trace == "stack line"
        assert pay.has_error
        assert skipped.class_name == "mod"
        assert skipped.skipped
        assert skipped.skipped_message == "not today"
        assert skipped.run_id is None

    def test_suite_without_time_sums_cases(self, tmp_path):
        path = tmp_path / "r.xml"
        path.write_text(
            '<testsuite name="a/b"><testcase name="x" time="1"/>'
            '<testcase name="y" time="2"/></testsuite>'
        )

        [suite] = parse_suites(path)

        assert suite.name == "a_b"
        assert suite.duration == 3.0

    def test_malformed_raises(self, tmp_path):
        path = tmp_path / "r.xml"
        path.write_text("<testsuite>")
        with pytest.raises(etree.XMLSyntaxError):
            parse_suites(path)


class TestTestResult:
    """Tests for TestResult merging and serialisation."""

    def test_retry_merged(self):
        result = TestResult()
        first = SuiteResult(name="S", id="1", timestamp="t1", duration=1.0, has_time=True)
        first.add_case(CaseResult(class_name="S", test_name="a"))
        retry = SuiteResult(name="S", id="1", timestamp="t2", duration=2.0, has_time=True)
        retry.add_case(CaseResult(class_name="S", test_name="a"))

        result.add(first)
        result.add(retry)

        assert len(result.suites) == 1
        assert len(result.suites[0].cases) == 2
        assert result.duration == 3.0

    def test_duplicate_dropped(self):
        result = TestResult()
        result.add(SuiteResult(name="S", timestamp="t"))
        result.add(SuiteResult(name="S", timestamp="t"))
        assert len(result.suites) == 1

    def test_empty_file_gives_empty_suite(self, tmp_path):
        path = tmp_path / "empty.xml"
        path.write_text("")

        result = parse_result(path)

        [suite] = result.suites
        assert suite.name.startswith("(")
        assert suite.name.endswith("empty.xml)")
        assert suite.cases == []

    def test_unreadable_file_skipped(self, tmp_path):
        path = tmp_path / "bad.xml"
        path.write_text("<oops")
        assert parse_result(path).suites == []

    def test_no_path(self):
        assert parse_result(None).suites == []

    def test_external_assets_applied(self, results_file):
        result = parse_result(results_file, external_assets="https://assets")
        assert result.suites[0].external_assets == "https://assets"

    def test_to_xml(self, results_file):
        xml = parse_result(results_file, keep_long_stdio=False).to_xml()

        root = etree.fromstring(xml.encode("utf-8"))
        assert root.tag == "result"
        assert root.findtext("keepLongStdio") == "false"
        cases = root.findall("suites/suite/cases/case")
        assert [c.findtext("testName") for c in cases] == ["Checkout", "Pay", "Skipped"]
        assert cases[1].findtext("errorDetails") == "Step failed"
        assert cases[2].findtext("skipped") == "true"
