"""Turn server-side MBT compositions into launcher input.

A composition is an ordered list of unit references plus one data table
shared by the whole run. For every unit that references a test action
(``<package>\\<test>\\<action>:<label>``) a script fragment is generated
that loads and runs that action from the working tree. The data table is
written as CSV and base64 encoded; the launcher decodes it into the
generated test's data sheet.

Fragments are stored ready for a ``.properties`` value: line breaks are
the literal two-character sequences ``\\r\\n`` and ``=``/``:``/``\\`` are
backslash escaped.
"""

from __future__ import annotations

import base64
import csv
import io
import logging
import ntpath
import re

from ..discovery.paths import escape_prop_value
from .models import MbtDataSet, MbtScriptData, MbtTestData, MbtTestInfo, TestData, TestParam, UnitDetails

logger = logging.getLogger(__name__)

PACKAGE_SOURCE = "_1"
MBT_PARENT_SUB_DIR = "___mbt"

PROP_NEWLINE = "\\r\\n"
ITERATION_GUARD = (
    f"{PROP_NEWLINE}If Reporter.CurrentActionIterationStatus \\= 1 Then"
    f"{PROP_NEWLINE}ExitAction{PROP_NEWLINE}End If"
)

_TEST_PART = re.compile(r"(.*)\\Action")
_ACTION_LABEL = re.compile(r":(.*)")
_CSV_SPECIAL = re.compile(r'[",\n\r]')


def _match_or_self(pattern: re.Pattern[str], value: str) -> str:
    match = pattern.search(value)
    return match.group(1) if match else value


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def escape_csv_value(value: str) -> str:
    """Quote *value* for one CSV cell.

    Wrapping quotes sent by the server are dropped first, inner quotes are
    doubled, and the result is quoted only when it needs to be.

    >>> escape_csv_value('va"lue')
    '"va""lue"'
    >>> escape_csv_value('"quoted"')
    'quoted'
    """
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    value = value.replace('"', '""')
    return f'"{value}"' if _CSV_SPECIAL.search(value) else value


def unescape_csv_value(value: str) -> str:
    """Inverse of ``escape_csv_value`` for a quoted cell; plain cells pass through."""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1].replace('""', '"')
    return value


def encode_data_table(data: MbtDataSet) -> str:
    """Base64 CSV of *data*: header row, then one row per iteration.

    Returns:
        ``""`` when the table declares no parameters.
    """
    if not data.parameters:
        return ""
    rows = [",".join(escape_csv_value(p) for p in data.parameters)]
    rows.extend(
        ",".join(escape_csv_value(cell) for cell in iteration)
        for iteration in data.iterations
    )
    text = "\n".join(rows)
    logger.debug("Data table CSV: %s", text)
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_data_table(encoded: str) -> tuple[list[str], list[list[str]]]:
    """Header and rows of a table produced by ``encode_data_table``."""
    if not encoded:
        return [], []
    text = base64.b64decode(encoded).decode("utf-8")
    rows = list(csv.reader(io.StringIO(text, newline="")))
    if not rows:
        return [], []
    return rows[0], rows[1:]


# ---------------------------------------------------------------------------
# Script generation
# ---------------------------------------------------------------------------


def extract_action_params(params: list[TestParam]) -> str:
    """Argument list of a ``LoadAndRunAction`` call, each argument comma-prefixed.

    Inputs come first, in composition order: a bound output of an earlier
    action, or the data-table column named after the parameter. Outputs
    follow as plain variable names.
    """
    inputs = "".join(
        f",{p.output_parameter}"
        if p.output_parameter
        else f',DataTable("{p.name}")'
        for p in params
        if p.type.lower() == "input"
    )
    outputs = "".join(
        f",{p.name}" for p in params if p.type.lower() == "output"
    )
    return inputs + outputs


def action_test_path(repo_root: str, path_in_scm: str) -> str:
    """Absolute (Windows) folder of the test owning the referenced action."""
    return f"{repo_root}\\{_match_or_self(_TEST_PART, path_in_scm)}"


def generate_script_data(
    units: list[UnitDetails], repo_root: str
) -> list[MbtScriptData]:
    """One fragment per action unit; plain file references are skipped."""
    logger.debug(
        "generate_script_data: units=%d, repo_root=[%s] ...", len(units), repo_root
    )
    scripts: list[MbtScriptData] = []
    for unit in units:
        if ":" not in unit.path_in_scm:
            continue
        test_path = action_test_path(repo_root, unit.path_in_scm)
        label = _match_or_self(_ACTION_LABEL, unit.path_in_scm)
        script = (
            f'{PROP_NEWLINE}LoadAndRunAction "{escape_prop_value(test_path)}",'
            f'"{escape_prop_value(label)}"'
        )
        if unit.parameters:
            script += f",rngAll{extract_action_params(unit.parameters)}"
        script += ITERATION_GUARD
        scripts.append(
            MbtScriptData(
                unit_id=unit.unit_id, test_path=test_path, basic_script=script
            )
        )
    return scripts


def build_mbt_test_info(
    repo_root: str,
    run_id: int,
    data: MbtTestData,
    test_name_lookup: dict[int, TestData],
) -> MbtTestInfo:
    """Launcher input for run *run_id*.

    Args:
        repo_root: Working tree the action references are resolved against.
        run_id: Server run id; carried through to the results.
        data: Composition of the run.
        test_name_lookup: Parsed ``testsToRun`` entries by run id.

    Raises:
        KeyError: *run_id* is not part of *test_name_lookup*.
    """
    logger.debug("build_mbt_test_info: run_id=%s ...", run_id)
    test_name = test_name_lookup[run_id].test_name
    scripts = generate_script_data(data.actions, repo_root)
    underlying_tests = [
        action_test_path(repo_root, u.path_in_scm)
        if ":" in u.path_in_scm
        else ""
        for u in data.actions
    ]
    return MbtTestInfo(
        run_id=run_id,
        test_name=test_name,
        test_source=ntpath.join(
            repo_root, MBT_PARENT_SUB_DIR, PACKAGE_SOURCE, test_name
        ),
        package_source=PACKAGE_SOURCE,
        script_data=scripts,
        underlying_tests=underlying_tests,
        unit_ids=[u.unit_id for u in data.actions],
        encoded_iterations=encode_data_table(data.data),
    )
