"""
Tests for the MBT composition converter: data tables and action scripts.
"""

import base64
import unittest

from mbt_ci_bridge.mbt.converter import (
    ITERATION_GUARD,
    MBT_PARENT_SUB_DIR,
    PACKAGE_SOURCE,
    PROP_NEWLINE,
    action_test_path,
    build_mbt_test_info,
    decode_data_table,
    encode_data_table,
    escape_csv_value,
    extract_action_params,
    generate_script_data,
    unescape_csv_value,
)
from mbt_ci_bridge.mbt.models import (
    MbtDataSet,
    MbtTestData,
    TestData,
    TestParam,
    UnitDetails,
)


class TestCsvValues(unittest.TestCase):
    """Test CSV cell escaping."""

    def test_plain_value(self):
        """Test that plain values are left alone."""
        self.assertEqual(escape_csv_value("admin"), "admin")

    def test_inner_quotes_doubled(self):
        """Test that inner quotes are doubled and the cell quoted."""
        self.assertEqual(escape_csv_value('va"lue'), '"va""lue"')

    def test_wrapping_quotes_dropped(self):
        """Test that quotes wrapped around a value by the server are dropped."""
        self.assertEqual(escape_csv_value('"quoted"'), "quoted")

    def test_comma_quoted(self):
        """Test that separators force quoting."""
        self.assertEqual(escape_csv_value("a,b"), '"a,b"')
        self.assertEqual(escape_csv_value("a\nb"), '"a\nb"')

    def test_unescape(self):
        """Test that unescape reverses a quoted cell."""
        self.assertEqual(unescape_csv_value('"va""lue"'), 'va"lue')
        self.assertEqual(unescape_csv_value("plain"), "plain")


class TestDataTable(unittest.TestCase):
    """Test base64 CSV encoding of the run data table."""

    def test_no_parameters_encodes_empty(self):
        """Test that a table without columns is sent as an empty string."""
        self.assertEqual(encode_data_table(MbtDataSet()), "")
        self.assertEqual(decode_data_table(""), ([], []))

    def test_encoded_csv_layout(self):
        """Test header and row layout of the encoded table."""
        data = MbtDataSet(parameters=["user", "note"], iterations=[["bob", "a,b"]])

        text = base64.b64decode(encode_data_table(data)).decode("utf-8")

        self.assertEqual(text, 'user,note\nbob,"a,b"')

    def test_decode_restores_cells(self):
        """Test that special characters survive encoding."""
        data = MbtDataSet(
            parameters=["user", "comment"],
            iterations=[["bob", 'said "hi", left'], ["amy", "line1\nline2"]],
        )

        header, rows = decode_data_table(encode_data_table(data))

        self.assertEqual(header, ["user", "comment"])
        self.assertEqual(
            rows, [["bob", 'said "hi", left'], ["amy", "line1\nline2"]]
        )

    def test_null_cells_become_empty(self):
        """Test that null cells sent by the server are empty strings."""
        data = MbtDataSet(parameters=["a"], iterations=[[None], [3]])
        self.assertEqual(data.iterations, [[""], ["3"]])


class TestActionParams(unittest.TestCase):
    """Test LoadAndRunAction argument lists."""

    def test_inputs_then_outputs(self):
        """Test that inputs precede outputs and bound outputs are reused."""
        params = [
            TestParam(name="receipt", type="output"),
            TestParam(name="user", type="input"),
            TestParam(name="token", type="INPUT", outputParameter="loginToken"),
        ]
        self.assertEqual(
            extract_action_params(params),
            ',DataTable("user"),loginToken,receipt',
        )

    def test_no_params(self):
        """Test that an action without parameters has no arguments."""
        self.assertEqual(extract_action_params([]), "")


class TestScriptGeneration(unittest.TestCase):
    """Test script fragments generated per action unit."""

    def _login_unit(self, **kwargs):
        return UnitDetails(
            unitId=7, pathInScm="Pkg\\Login\\Action1:Login", name="Login", **kwargs
        )

    def test_action_test_path(self):
        """Test that the action part is cut from the unit path."""
        self.assertEqual(
            action_test_path("/w", "Pkg\\Login\\Action1:Login"), "/w\\Pkg\\Login"
        )

    def test_fragment_without_params(self):
        """Test the fragment of an action without parameters."""
        [script] = generate_script_data([self._login_unit()], "/w")

        self.assertEqual(script.unit_id, 7)
        self.assertEqual(script.test_path, "/w\\Pkg\\Login")
        self.assertEqual(
            script.basic_script,
            f'{PROP_NEWLINE}LoadAndRunAction "/w\\\\Pkg\\\\Login","Login"'
            f"{ITERATION_GUARD}",
        )

    def test_fragment_with_params(self):
        """Test that parameters are passed after rngAll."""
        unit = self._login_unit(parameters=[TestParam(name="user")])

        [script] = generate_script_data([unit], "/w")

        self.assertIn(',"Login",rngAll,DataTable("user")', script.basic_script)

    def test_file_references_skipped(self):
        """Test that units without an action reference produce no fragment."""
        unit = UnitDetails(unitId=8, pathInScm="docs\\readme.txt")
        self.assertEqual(generate_script_data([unit], "/w"), [])

    def test_guard_uses_literal_line_breaks(self):
        """Test that line breaks are stored escaped for a properties file."""
        self.assertNotIn("\n", ITERATION_GUARD)
        self.assertTrue(ITERATION_GUARD.startswith("\\r\\n"))


class TestBuildMbtTestInfo(unittest.TestCase):
    """Test the launcher input of one run."""

    def test_composition(self):
        """Test a two-step composition with a file reference in between."""
        data = MbtTestData(
            data=MbtDataSet(parameters=["user"], iterations=[["bob"]]),
            actions=[
                UnitDetails(unitId=1, pathInScm="Pkg\\Login\\Action1:Login"),
                UnitDetails(unitId=2, pathInScm="notes"),
                UnitDetails(unitId=3, pathInScm="Pkg\\Pay\\Action2:Pay"),
            ],
        )
        lookup = {
            1001: TestData(
                package_source="_1",
                class_name="C",
                test_name="Checkout",
                run_id=1001,
            )
        }

        info = build_mbt_test_info("/w", 1001, data, lookup)

        self.assertEqual(info.run_id, 1001)
        self.assertEqual(info.test_name, "Checkout")
        self.assertEqual(info.package_source, PACKAGE_SOURCE)
        self.assertTrue(info.test_source.endswith(f"{MBT_PARENT_SUB_DIR}\\_1\\Checkout"))
        self.assertEqual(info.unit_ids, [1, 2, 3])
        self.assertEqual(
            info.underlying_tests, ["/w\\Pkg\\Login", "", "/w\\Pkg\\Pay"]
        )
        self.assertEqual([s.unit_id for s in info.script_data], [1, 3])
        self.assertEqual(decode_data_table(info.encoded_iterations), (["user"], [["bob"]]))

    def test_unknown_run_raises(self):
        """Test that a run missing from testsToRun raises KeyError."""
        with self.assertRaises(KeyError):
            build_mbt_test_info("/w", 5, MbtTestData(), {})
