"""Conversion of launcher results into the server's test-result format."""

from .builder import build_results_xml, iterate_junit_results
from .junit import CaseResult, SuiteResult, TestResult, parse_result
from .manager import publish_results
from .run_results import get_mbt_data

__all__ = [
    "CaseResult",
    "SuiteResult",
    "TestResult",
    "build_results_xml",
    "get_mbt_data",
    "iterate_junit_results",
    "parse_result",
    "publish_results",
]
