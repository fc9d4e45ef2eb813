"""Read step results out of a tool ``run_results.xml`` report.

The report is a ``Results/ReportNode`` tree. For an MBT run the node
levels are::

    ReportNode (test)
      ReportNode type="Iteration"
        ReportNode type="Action"      <- one per generated step
          ReportNode ...              <- checkpoints, object steps, ...

Every action becomes a step of its iteration; when an action failed, the
error messages of the nodes below it are collected into one message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from lxml import etree

from ..discovery.paths import parse_time_to_float

logger = logging.getLogger(__name__)

ITERATION = "Iteration"
ACTION = "Action"
CONTEXT = "Context"

ITERATION_LEVEL = 2
ACTION_LEVEL = 3

_FAILED = re.compile(r"failed|warning", re.IGNORECASE)
_WARNING = re.compile(r"warning", re.IGNORECASE)
_VERIFY_PROPERTIES = re.compile(
    r"Verify that this object's properties match an object currently "
    r"displayed in your application\.",
    re.IGNORECASE,
)

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)


@dataclass(frozen=True)
class StepParameter:
    name: str
    value: str
    type: str = "String"


@dataclass(frozen=True)
class ReportNode:
    """One ``ReportNode`` with its ``Data`` fields."""

    type: str
    name: str
    description: str = ""
    error_text: str = ""
    duration: float = 0.0
    result: str = ""
    input_parameters: tuple[StepParameter, ...] = ()
    output_parameters: tuple[StepParameter, ...] = ()
    children: tuple[ReportNode, ...] = ()

    @property
    def failed(self) -> bool:
        return bool(_FAILED.search(self.result))

    @property
    def is_warning(self) -> bool:
        return bool(_WARNING.search(self.result))


@dataclass
class RunResultsStep:
    name: str
    status: str
    duration: float
    error_message: str = ""
    input_parameters: list[StepParameter] = field(default_factory=list)
    output_parameters: list[StepParameter] = field(default_factory=list)


@dataclass
class RunResultsIteration:
    steps: list[RunResultsStep] = field(default_factory=list)


def _child_text(element: etree._Element, tag: str) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text


def _parameters(data: etree._Element | None, tag: str) -> tuple[StepParameter, ...]:
    if data is None:
        return ()
    params = []
    for param in data.iterfind(f"{tag}/Parameter"):
        params.append(
            StepParameter(
                name=param.get("name") or _child_text(param, "Name"),
                value=param.get("value") or _child_text(param, "Value"),
                type=param.get("type") or _child_text(param, "Type") or "String",
            )
        )
    return tuple(params)


def parse_report_node(element: etree._Element) -> ReportNode:
    """Convert a ``ReportNode`` element and its descendants."""
    data = element.find("Data")
    duration = _child_text(data, "Duration") if data is not None else ""
    return ReportNode(
        type=element.get("type") or "",
        name=_child_text(data, "Name") if data is not None else "",
        description=_child_text(data, "Description") if data is not None else "",
        error_text=_child_text(data, "ErrorText") if data is not None else "",
        duration=parse_time_to_float(duration) if duration else 0.0,
        result=_child_text(data, "Result") if data is not None else "",
        input_parameters=_parameters(data, "InputParameters"),
        output_parameters=_parameters(data, "OutputParameters"),
        children=tuple(
            parse_report_node(child) for child in element.iterfind("ReportNode")
        ),
    )


def find_nodes(root: ReportNode, node_type: str, level: int) -> list[ReportNode]:
    """Nodes of *node_type* exactly *level* levels deep, *root* being level 1."""
    found: list[ReportNode] = []

    def visit(node: ReportNode, depth: int) -> None:
        if depth == level:
            if node.type == node_type:
                found.append(node)
            return
        for child in node.children:
            visit(child, depth + 1)

    visit(root, 1)
    return found


def step_status(node: ReportNode) -> str:
    """Warnings count as passed; a node without a result passed."""
    if _WARNING.search(node.result):
        return "Passed"
    return node.result or "Passed"


def clean_error_text(text: str) -> str:
    text = _VERIFY_PROPERTIES.sub("", text)
    return text.replace("\n", "").replace("\u00a0", " ").strip()


@dataclass(frozen=True)
class StepError:
    """A failed node below an action and the names of the nodes above it."""

    message: str
    is_warning: bool
    path: tuple[str, ...] = ()


def collect_errors(node: ReportNode, path: tuple[str, ...] = ()) -> list[StepError]:
    """Errors of the failed descendants of *node*, depth first.

    *path* holds the names of the nodes above *node*; every recursion gets
    its own extended copy. Iteration, action and context nodes never
    contribute a message themselves, nor do nodes without a description.
    When a message already starts with its parent's name, that name is left
    out of the error's path.
    """
    errors: list[StepError] = []
    current = path + (node.name,)
    for child in node.children:
        if not child.failed:
            continue
        child_path = current + (child.name,)
        if child.type not in (ITERATION, ACTION, CONTEXT) and child.description:
            message = clean_error_text(child.error_text or child.description)
            error_path = child_path
            if message.startswith(child_path[-1]):
                error_path = child_path[:-1]
            errors.append(StepError(message, child.is_warning, error_path))
        errors.extend(collect_errors(child, current))
    return errors


def aggregate_errors(errors: list[StepError]) -> str:
    """One line per distinct message, each ending with a full stop."""
    lines: list[str] = []
    for error in errors:
        message = error.message.strip()
        line = message
        if error.is_warning:
            line += " (Warning)"
        if not message.endswith("."):
            line += ". "
        if line not in lines:
            lines.append(line)
    return "\n".join(lines)


def action_step(action: ReportNode) -> RunResultsStep:
    step = RunResultsStep(
        name=action.name,
        status=step_status(action),
        duration=action.duration,
        input_parameters=list(action.input_parameters),
        output_parameters=list(action.output_parameters),
    )
    if action.failed:
        step.error_message = aggregate_errors(collect_errors(action))
    return step


def mbt_data_from_root(root: ReportNode) -> list[RunResultsIteration]:
    iterations = []
    for iteration in find_nodes(root, ITERATION, ITERATION_LEVEL):
        iterations.append(
            RunResultsIteration(
                steps=[
                    action_step(action)
                    for action in find_nodes(iteration, ACTION, ACTION_LEVEL)
                ]
            )
        )
    return iterations


def get_mbt_data(path: Path) -> list[RunResultsIteration]:
    """Iterations and their steps from the report at *path*.

    An unreadable report or one without a top-level ``ReportNode`` yields
    no iterations.
    """
    logger.debug("get_mbt_data: [%s] ...", path)
    try:
        doc = etree.parse(str(path), _PARSER).getroot()
    except (OSError, etree.XMLSyntaxError) as e:
        logger.error("Failed to read [%s]: %s", path, e)
        return []
    top = doc if doc.tag == "ReportNode" else doc.find("ReportNode")
    if top is None:
        logger.error("No ReportNode found in [%s]", path)
        return []
    return mbt_data_from_root(parse_report_node(top))
