"""Parser for the ``testsToRun`` workflow input.

The server passes the tests of a suite run as::

    v1:<package>|<class>|<test>|runId=<id>|mbtData=<data>;<package>|...

The ``v1:`` prefix is optional. MBT entries must carry the ``mbtData``
field; anything else means the suite was started with a runner of another
framework.
"""

from __future__ import annotations

import logging
import re

from ..errors import ValidationError
from .models import TestData

logger = logging.getLogger(__name__)

_VERSION_PREFIX = re.compile(r"^v1:(.+)$", re.DOTALL)
_RUN_ID = re.compile(r"^runId=(.+)$")
_MBT_DATA = re.compile(r"^mbtData=(.+)$", re.DOTALL)

INCOMPATIBLE_RUNNER = "The chosen test runner is incompatible with the chosen framework"


def _group_or_self(pattern: re.Pattern[str], value: str) -> str:
    match = pattern.match(value)
    return match.group(1) if match else value


def parse_test_param(fields: list[str]) -> TestData:
    """One ``|``-separated entry.

    Raises:
        ValidationError: Fewer than five fields, no ``mbtData`` field, or a
            run id that is not a number.
    """
    if len(fields) < 5 or "mbtData" not in fields[4]:
        raise ValidationError(INCOMPATIBLE_RUNNER)
    raw_run_id = _group_or_self(_RUN_ID, fields[3])
    try:
        run_id = int(raw_run_id)
    except ValueError:
        raise ValidationError(f"Invalid run id '{raw_run_id}'") from None
    return TestData(
        package_source=fields[0],
        class_name=fields[1],
        test_name=fields[2],
        run_id=run_id,
        mbt_data=_group_or_self(_MBT_DATA, fields[4]) if fields[4] else None,
    )


def parse_test_data(raw: str) -> dict[int, TestData]:
    """Entries of a ``testsToRun`` value keyed by run id.

    Raises:
        ValidationError: Any entry is malformed.
    """
    logger.debug('parse_test_data: raw="%s"', raw)
    body = _group_or_self(_VERSION_PREFIX, raw.strip())
    parsed: dict[int, TestData] = {}
    for entry in body.split(";"):
        try:
            test = parse_test_param(entry.split("|"))
        except ValidationError as e:
            raise ValidationError(f"Failed to parse test data: {e}") from e
        parsed[test.run_id] = test
    return parsed
