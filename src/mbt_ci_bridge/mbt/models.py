"""Pydantic models for MBT suite compositions and generated run data.

The server sends compositions as camelCase JSON; the models accept those
keys through aliases and expose snake_case attributes:

- ``TestParam``, ``UnitDetails``, ``MbtDataSet``, ``MbtTestData``: one
  run's composition (ordered units plus the shared data table).
- ``TestData``: one entry of the ``testsToRun`` workflow input.
- ``MbtScriptData``, ``MbtTestInfo``: what the converter derives for the
  launcher.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

_ALIASED = {"populate_by_name": True, "extra": "ignore"}


class TestParam(BaseModel):
    """Unit parameter as bound inside one composition."""

    id: int | str | None = None
    name: str
    type: str = "input"
    order: int | None = None
    output_parameter: str | None = Field(default=None, alias="outputParameter")
    original_name: str | None = Field(default=None, alias="originalName")
    unit_parameter_id: int | str | None = Field(
        default=None, alias="unitParameterId"
    )
    unit_parameter_name: str | None = Field(
        default=None, alias="unitParameterName"
    )
    parameter_id: int | str | None = Field(default=None, alias="parameterId")

    model_config = _ALIASED

    __test__ = False


class UnitDetails(BaseModel):
    """One ordered unit reference of a composition.

    ``path_in_scm`` is the unit's repository path; only paths containing
    ``:`` reference a test action.
    """

    testing_tool_type: str | None = Field(default=None, alias="testingToolType")
    path_in_scm: str = Field(default="", alias="pathInScm")
    name: str = ""
    unit_id: int = Field(alias="unitId")
    parameters: list[TestParam] = Field(default_factory=list)
    order: int | None = None

    model_config = _ALIASED


class MbtDataSet(BaseModel):
    """Data table shared by all actions of a run: header plus one row per iteration."""

    parameters: list[str] = Field(default_factory=list)
    iterations: list[list[str]] = Field(default_factory=list)

    @field_validator("iterations", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [
            ["" if cell is None else str(cell) for cell in row]
            if isinstance(row, list)
            else row
            for row in value
        ]


class MbtTestData(BaseModel):
    """Composition of one MBT run as returned by ``get_suite_data``."""

    data: MbtDataSet = Field(default_factory=MbtDataSet)
    actions: list[UnitDetails] = Field(default_factory=list)

    @field_validator("data", mode="before")
    @classmethod
    def _empty_data(cls, value: Any) -> Any:
        return {} if value is None else value


class TestData(BaseModel):
    """Parsed ``package|class|test|runId=N|mbtData=...`` entry."""

    package_source: str
    class_name: str
    test_name: str
    run_id: int
    mbt_data: str | None = None

    model_config = {"frozen": True}

    __test__ = False


class MbtScriptData(BaseModel):
    """Script fragment invoking one action, plus the test folder it loads."""

    unit_id: int
    test_path: str
    basic_script: str

    model_config = {"frozen": True}


class MbtTestInfo(BaseModel):
    """Everything the launcher needs to run one MBT test."""

    run_id: int
    test_name: str
    test_source: str
    package_source: str
    script_data: list[MbtScriptData] = Field(default_factory=list)
    underlying_tests: list[str] = Field(default_factory=list)
    unit_ids: list[int] = Field(default_factory=list)
    encoded_iterations: str = ""

    model_config = {"frozen": True}
