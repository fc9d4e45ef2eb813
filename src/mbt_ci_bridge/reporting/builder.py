"""Build the ``test_result`` document the result ingestion API accepts.

Each JUnit test case becomes one ``test_run``; when the run's
``run_results.xml`` is known, its iterations are added as ``steps``
elements with one ``step`` per executed action.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from lxml import etree

from .junit import CaseResult, TestResult
from .run_results import RunResultsIteration, StepParameter, get_mbt_data

logger = logging.getLogger(__name__)

DESCRIPTION_MARKERS = ("__octane_description_start__", "__octane_description_end__")
EXTERNAL_URL_MARKERS = ("__octane_external_url_start__", "__octane_external_url_end__")

PASSED = "PASSED"
FAILED = "FAILED"
SKIPPED = "SKIPPED"


def _num(value: float) -> str:
    """Render a number without a trailing ``.0``."""
    if value == int(value):
        return str(int(value))
    return repr(value)


def extract_from_stdout(stdout: str, markers: tuple[str, str]) -> str:
    """Text between the start and end marker, or ``""``.

    A marker at the very start of the output is not recognised; the tool
    always prints something before it.
    """
    start, end = markers
    start_idx = stdout.find(start)
    if start_idx <= 0:
        return ""
    end_idx = stdout.find(end, start_idx)
    if end_idx <= 0:
        return ""
    return stdout[start_idx + len(start) : end_idx].strip()


@dataclass
class TestError:
    stack_trace: str
    message: str
    type: str = ""

    __test__ = False


@dataclass
class JUnitTestResult:
    """One ``test_run`` element."""

    module_name: str
    package_name: str
    class_name: str
    test_name: str
    status: str
    duration: float
    started: int
    error: TestError | None = None
    external_report_url: str = ""
    description: str = ""
    iterations: list[RunResultsIteration] = field(default_factory=list)
    run_id: int | None = None
    external_assets: str = ""

    def write_element(self, parent: etree._Element) -> etree._Element:
        test_run = etree.SubElement(
            parent,
            "test_run",
            module=self.module_name,
            package=self.package_name,
            **{"class": self.class_name},
            name=self.test_name,
            duration=_num(self.duration),
            status=self.status,
            started=str(self.started),
            external_report_url=self.external_report_url,
            external_assets=self.external_assets,
        )
        if self.error is not None:
            error = etree.SubElement(
                test_run, "error", type=self.error.type, message=self.error.message
            )
            error.text = self.error.stack_trace
        if self.description:
            etree.SubElement(test_run, "description").text = self.description
        for index, iteration in enumerate(self.iterations, start=1):
            steps = etree.SubElement(test_run, "steps", iteration=str(index))
            for step in iteration.steps:
                element = etree.SubElement(
                    steps,
                    "step",
                    name=step.name,
                    duration=_num(step.duration),
                    status=step.status,
                )
                if step.error_message:
                    etree.SubElement(element, "error_message").text = step.error_message
                _write_parameters(element, "input_parameters", step.input_parameters)
                _write_parameters(element, "output_parameters", step.output_parameters)
        return test_run


def _write_parameters(
    step: etree._Element, tag: str, params: list[StepParameter]
) -> None:
    if not params:
        return
    container = etree.SubElement(step, tag)
    for param in params:
        etree.SubElement(
            container, "parameter", name=param.name, value=param.value, type=param.type
        )


def junit_test_result(
    case: CaseResult,
    build_started: int,
    run_results_files: dict[int, Path],
    external_assets: str = "",
) -> JUnitTestResult:
    """Convert one test case, reading its run's report when there is one."""
    iterations: list[RunResultsIteration] = []
    if case.run_id is not None and case.run_id in run_results_files:
        iterations = get_mbt_data(run_results_files[case.run_id])
    else:
        logger.error("Run results file not found for runId: %s", case.run_id)

    description = ""
    external_url = ""
    if case.stdout:
        description = extract_from_stdout(case.stdout, DESCRIPTION_MARKERS)
        external_url = extract_from_stdout(case.stdout, EXTERNAL_URL_MARKERS)

    error = None
    if case.has_error:
        error = TestError(
            stack_trace=case.error_stack_trace, message=case.error_details
        )

    if case.skipped:
        status = SKIPPED
    elif error is not None:
        status = FAILED
    else:
        status = PASSED

    return JUnitTestResult(
        module_name=case.class_name,
        package_name="",
        class_name=case.class_name,
        test_name=case.test_name,
        status=status,
        duration=case.duration,
        started=build_started,
        error=error,
        external_report_url=external_url,
        description=description,
        iterations=iterations,
        run_id=case.run_id,
        external_assets=external_assets,
    )


def iterate_junit_results(
    test_result: TestResult,
    run_results_files: dict[int, Path],
    build_started: int | None = None,
) -> list[JUnitTestResult]:
    """One result per test name; a later case with the same name wins."""
    started = build_started if build_started is not None else int(time.time() * 1000)
    by_name: dict[str, JUnitTestResult] = {}
    for suite, case in test_result.cases():
        by_name[case.test_name] = junit_test_result(
            case, started, run_results_files, suite.external_assets
        )
    return list(by_name.values())


def build_results_xml(
    server_id: str, job_id: str, build_id: str | int, results: list[JUnitTestResult]
) -> str:
    root = etree.Element("test_result")
    etree.SubElement(
        root, "build", server_id=server_id, job_id=job_id, build_id=str(build_id)
    )
    test_runs = etree.SubElement(root, "test_runs")
    for result in results:
        result.write_element(test_runs)
    return etree.tostring(
        root, pretty_print=True, xml_declaration=True, encoding="UTF-8"
    ).decode("utf-8")
