"""Tests for reporting.manager: collecting, writing and publishing results."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests
from lxml import etree

from mbt_ci_bridge.core.github import GitHubClient
from mbt_ci_bridge.errors import ValidationError
from mbt_ci_bridge.reporting.manager import (
    JUNIT_RESULT_FILE,
    MQM_TESTS_FILE,
    build_results_file,
    collect_run_results_files,
    extract_run_id_from_path,
    publish_results,
    upload_run_results,
)
from mbt_ci_bridge.reporting.junit import CaseResult, SuiteResult, TestResult

RESULTS_XML = """<testsuite name="Suite" time="3">
  <testcase name="Checkout" classname="Suite" time="3" runId="1001"/>
</testsuite>
"""


@pytest.fixture
def github():
    return MagicMock(spec=GitHubClient)


def _report(root, run_id, test="Checkout", report="Report"):
    path = root / str(run_id) / test / report / "run_results.xml"
    path.parent.mkdir(parents=True)
    path.write_text("<Results/>")
    return path


class TestRunIds:
    """Tests for run id extraction and report collection."""

    def test_extract_run_id(self):
        path = Path("/rw/___mbt/1001/Checkout/Report1/run_results.xml")
        assert extract_run_id_from_path(path) == 1001

    def test_no_report_dir(self):
        with pytest.raises(ValidationError):
            extract_run_id_from_path(Path("/rw/1001/Checkout/run_results.xml"))

    def test_non_numeric(self):
        with pytest.raises(ValidationError):
            extract_run_id_from_path(Path("/rw/abc/Checkout/Report/run_results.xml"))

    def test_collect(self, tmp_path):
        first = _report(tmp_path, 1001)
        second = _report(tmp_path, 1002, "Pay", "Report2")

        assert collect_run_results_files(tmp_path) == {1001: first, 1002: second}

    def test_collect_empty(self, tmp_path):
        assert collect_run_results_files(tmp_path) == {}


class TestUploads:
    """Tests for artifact uploads."""

    async def test_failed_upload_isolated(self, tmp_path, github):
        files = {1: _report(tmp_path, 1), 2: _report(tmp_path, 2)}
        def upload(root, paths, name):
            if name == "run_results_2":
                raise RuntimeError("quota")
            return 11

        github.upload_artifact.side_effect = upload

        ids = await upload_run_results(github, tmp_path, files)

        assert ids == {1: 11, 2: None}
        names = sorted(c.args[2] for c in github.upload_artifact.call_args_list)
        assert names == ["run_results_1", "run_results_2"]


class TestBuildResultsFile:
    """Tests for build_results_file() and publish_results()."""

    def _result(self):
        suite = SuiteResult(name="Suite")
        suite.add_case(CaseResult(class_name="Suite", test_name="Checkout", run_id=1001))
        return TestResult(suites=[suite])

    async def test_files_written_and_uploaded(self, tmp_path, github):
        mqm_path = await build_results_file(
            github, "srv", "job", 9, self._result(), tmp_path
        )

        assert mqm_path == tmp_path / "___mbt" / MQM_TESTS_FILE
        assert (tmp_path / "___mbt" / JUNIT_RESULT_FILE).exists()
        root = etree.parse(str(mqm_path)).getroot()
        assert root.find("build").get("build_id") == "9"
        assert root.find("test_runs/test_run").get("name") == "Checkout"
        artifact_names = [c.args[2] for c in github.upload_artifact.call_args_list]
        assert artifact_names == ["junitResult_xml", "mqmTests_xml"]

    async def test_publish_sends_xml(self, tmp_path, github, mock_client):
        results_path = tmp_path / "results.xml"
        results_path.write_text(RESULTS_XML)

        await publish_results(mock_client, github, "srv", "job", 9, results_path, tmp_path)

        xml = mock_client.send_test_results.call_args[0][0]
        assert "<test_result>" in xml
        assert 'name="Checkout"' in xml

    async def test_rejected_upload_not_fatal(self, tmp_path, github, mock_client):
        results_path = tmp_path / "results.xml"
        results_path.write_text(RESULTS_XML)
        mock_client.send_test_results.side_effect = requests.HTTPError("400")

        await publish_results(mock_client, github, "srv", "job", 9, results_path, tmp_path)

        mock_client.send_test_results.assert_called_once()
