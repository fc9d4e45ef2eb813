"""Streaming parser for the launcher's JUnit-style results file.

The launcher writes ``testsuite``/``testcase`` elements; each test case
carries the ``runId`` of the MBT run it executed, which is what joins it to
the run's ``run_results.xml`` later on.

The file is read with ``lxml.etree.iterparse`` and every test case element
is cleared once consumed, so large result files with long captured output
are never held in memory as a whole tree.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from lxml import etree

from ..discovery.paths import parse_time_to_float

logger = logging.getLogger(__name__)

STDIO_HALF_SIZE = 500
STDIO_HALF_SIZE_WITH_ERROR = 50000

_UNSAFE_NAME_CHARS = re.compile(r"[/\\:?#%<>]")


def _safe_name(name: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", name)


def _fmt(value: float) -> str:
    return f"{value:.5f}"


def possibly_trim_stdio(
    text: str | None, keep_long_stdio: bool, has_error: bool
) -> str | None:
    """Keep the head and tail of long captured output.

    Each half is 500 characters, or 50000 when the test case failed with a
    stack trace.
    """
    if text is None or keep_long_stdio:
        return text
    half = STDIO_HALF_SIZE_WITH_ERROR if has_error else STDIO_HALF_SIZE
    middle = len(text) - half * 2
    if middle <= 0:
        return text
    return f"{text[:half]}\n...[truncated {middle} chars]...\n{text[-half:]}"


@dataclass
class CaseResult:
    """One ``testcase``."""

    class_name: str
    test_name: str
    duration: float = 0.0
    run_id: int | None = None
    skipped: bool = False
    skipped_message: str | None = None
    stdout: str | None = None
    stderr: str | None = None
    error_stack_trace: str = ""
    error_details: str = ""

    @classmethod
    def from_attributes(cls, suite_name: str, attrs: dict[str, str]) -> CaseResult:
        """Build a case from its element attributes.

        Without a ``classname``, a dotted ``name`` is split into class and
        test name.
        """
        class_name = attrs.get("classname")
        name = attrs.get("name") or ""
        if class_name is None and "." in name:
            class_name, name = name.rsplit(".", 1)
        elif class_name is None:
            class_name = suite_name
        raw_run_id = attrs.get("runId")
        try:
            run_id = int(raw_run_id) if raw_run_id else None
        except ValueError:
            logger.warning("Ignoring malformed runId %r of test %s", raw_run_id, name)
            run_id = None
        return cls(
            class_name=class_name or "unnamed",
            test_name=name,
            duration=parse_time_to_float(attrs.get("time")),
            run_id=run_id,
        )

    @property
    def has_error(self) -> bool:
        return bool(self.error_stack_trace or self.error_details)

    def to_element(self) -> etree._Element:
        case = etree.Element("case")
        for tag, value in (
            ("duration", _fmt(self.duration)),
            ("className", self.class_name),
            ("testName", self.test_name),
            ("skipped", str(self.skipped).lower()),
            ("skippedMessage", self.skipped_message or ""),
            ("stdout", self.stdout or ""),
            ("errorStackTrace", self.error_stack_trace),
            ("errorDetails", self.error_details),
        ):
            etree.SubElement(case, tag).text = value
        return case


@dataclass
class SuiteResult:
    """One ``testsuite``; nested suites are reported as siblings."""

    name: str
    file: str | None = None
    id: str = ""
    timestamp: str = ""
    duration: float = 0.0
    has_time: bool = False
    external_assets: str = ""
    cases: list[CaseResult] = field(default_factory=list)

    @classmethod
    def from_attributes(cls, file: str, attrs: dict[str, str]) -> SuiteResult:
        name = attrs.get("name")
        if name is None:
            name = f"({file})"
        elif attrs.get("package"):
            name = f"{attrs['package']}.{name}"
        time = attrs.get("time")
        return cls(
            name=_safe_name(name),
            file=file,
            id=attrs.get("id") or "",
            timestamp=attrs.get("timestamp") or "",
            duration=parse_time_to_float(time) if time else 0.0,
            has_time=bool(time),
        )

    @classmethod
    def empty(cls, file: str) -> SuiteResult:
        return cls(name=_safe_name(f"({file})"))

    def add_case(self, case: CaseResult) -> None:
        self.cases.append(case)
        if not self.has_time:
            self.duration += case.duration

    def merge(self, other: SuiteResult) -> None:
        """Append the cases of a retry of this suite."""
        if other.has_time != self.has_time:
            logger.warning(
                "Merging of suite results with incompatible time attribute "
                "may lead to incorrect durations in reports."
            )
        if self.has_time:
            self.duration += other.duration
        for case in other.cases:
            self.add_case(case)

    def to_element(self) -> etree._Element:
        suite = etree.Element("suite")
        etree.SubElement(suite, "file").text = self.file or ""
        etree.SubElement(suite, "name").text = self.name
        etree.SubElement(suite, "enclosingBlocks").text = ""
        etree.SubElement(suite, "enclosingBlockNames").text = ""
        etree.SubElement(suite, "duration").text = _fmt(self.duration)
        cases = etree.SubElement(suite, "cases")
        for case in self.cases:
            cases.append(case.to_element())
        return suite


def parse_suites(path: Path, keep_long_stdio: bool = False) -> list[SuiteResult]:
    """All suites of *path* in document order.

    Raises:
        etree.XMLSyntaxError: The file is not well-formed.
    """
    logger.debug("parse_suites: [%s], keep_long_stdio=%s ...", path, keep_long_stdio)
    file = str(path)
    suites: list[SuiteResult] = []
    stack: list[SuiteResult] = []
    case: CaseResult | None = None

    for event, elem in etree.iterparse(
        file,
        events=("start", "end"),
        resolve_entities=False,
        no_network=True,
    ):
        tag = etree.QName(elem).localname if isinstance(elem.tag, str) else ""
        if event == "start":
            if tag == "testsuite":
                suite = SuiteResult.from_attributes(file, dict(elem.attrib))
                suites.append(suite)
                stack.append(suite)
            elif tag == "testcase":
                if not stack:
                    logger.warning("Testcase found outside of a testsuite, skipping.")
                    continue
                case = CaseResult.from_attributes(stack[-1].name, dict(elem.attrib))
            elif tag == "skipped" and case is not None:
                case.skipped = True
                case.skipped_message = elem.get("message") or ""
            continue

        if tag == "testsuite":
            if stack:
                stack.pop()
            elem.clear()
        elif case is None:
            continue
        elif tag == "testcase":
            stack[-1].add_case(case)
            case = None
            elem.clear()
        elif tag in ("error", "failure"):
            case.error_stack_trace = (elem.text or "").strip()
            if elem.get("message"):
                case.error_details = elem.get("message")
        elif tag == "system-out":
            case.stdout = possibly_trim_stdio(
                (elem.text or "").strip(), keep_long_stdio, case.has_error
            )
        elif tag == "system-err":
            case.stderr = possibly_trim_stdio(
                (elem.text or "").strip(), keep_long_stdio, case.has_error
            )
    return suites


@dataclass
class TestResult:
    """All suites of one results file, retries merged."""

    keep_long_stdio: bool = False
    duration: float = 0.0
    suites: list[SuiteResult] = field(default_factory=list)

    __test__ = False

    def add(self, suite: SuiteResult) -> None:
        """Add *suite*, merging it into an earlier run of the same suite.

        Suites match on ``(name, id)``. A match with the same timestamp is
        a duplicate and is dropped.
        """
        for existing in self.suites:
            if existing.name == suite.name and existing.id == suite.id:
                if existing.timestamp == suite.timestamp:
                    return
                self.duration += suite.duration
                existing.merge(suite)
                return
        self.suites.append(suite)
        self.duration += suite.duration

    def parse(self, path: Path, external_assets: str = "") -> None:
        """Add the suites of *path*; an unreadable file is logged and skipped."""
        try:
            suites = parse_suites(path, self.keep_long_stdio)
        except (OSError, etree.XMLSyntaxError) as e:
            logger.error("Failed to parse [%s]: %s", path, e)
            return
        for suite in suites:
            if external_assets:
                suite.external_assets = external_assets
            self.add(suite)

    def parse_possibly_empty(self, path: Path, external_assets: str = "") -> None:
        if path.stat().st_size == 0:
            self.add(SuiteResult.empty(str(path)))
        else:
            self.parse(path, external_assets)

    def cases(self) -> list[tuple[SuiteResult, CaseResult]]:
        return [(s, c) for s in self.suites for c in s.cases]

    def to_xml(self) -> str:
        root = etree.Element("result")
        etree.SubElement(root, "keepLongStdio").text = str(self.keep_long_stdio).lower()
        etree.SubElement(root, "duration").text = _fmt(self.duration)
        suites = etree.SubElement(root, "suites")
        for suite in self.suites:
            suites.append(suite.to_element())
        return etree.tostring(
            root, pretty_print=True, xml_declaration=True, encoding="UTF-8", standalone=False
        ).decode("utf-8")


def parse_result(
    path: Path | None, keep_long_stdio: bool = True, external_assets: str = ""
) -> TestResult:
    """Parse the launcher results file at *path* (an empty result for ``None``)."""
    logger.info("parse_result: [%s] ...", path)
    result = TestResult(keep_long_stdio=keep_long_stdio)
    if path is not None:
        result.parse_possibly_empty(path, external_assets)
    return result
