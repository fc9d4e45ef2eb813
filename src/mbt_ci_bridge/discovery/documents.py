"""Readers for UFT test documents.

GUI tests keep their metadata in ``Test.tsp`` and each action's arguments
in ``<action>/resource.mtr``. Both are OLE compound files whose
``ComponentInfo`` stream holds a UTF-16LE XML document. API tests keep a
plain ``actions.xml`` next to the ``.st`` file.

All XML is parsed with entity resolution and network access disabled.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import olefile
from lxml import etree

from ..errors import TspParseError
from ..file_handler import find_file_ignore_case, read_text_file
from .models import Action, ParamDirection, SyncStatus, TestType, UnitParameter
from .paths import (
    ACTION_RESOURCE_FILE,
    API_ACTIONS_FILE,
    GUI_TEST_FILE,
    build_action_repository_path,
)

logger = logging.getLogger(__name__)

COMPONENT_INFO_STREAM = "ComponentInfo"

_ACTION_0 = "action0"
# Dependency attributes identifying an action's logical name entry
_ACTION_DEPENDENCY_ATTRS = {"Type": "1", "Kind": "16", "Scope": "0"}

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


# ---------------------------------------------------------------------------
# Raw document loading
# ---------------------------------------------------------------------------


def extract_xml_from_cfb(path: Path) -> str:
    """Return the XML text stored in the ``ComponentInfo`` stream of *path*.

    Raises:
        TspParseError: The file is not a compound file, the stream is
            missing, or it contains no XML.
    """
    if not olefile.isOleFile(str(path)):
        raise TspParseError(f"{path} is not a compound binary file")
    try:
        with olefile.OleFileIO(str(path)) as ole:
            if not ole.exists(COMPONENT_INFO_STREAM):
                raise TspParseError(
                    f"{COMPONENT_INFO_STREAM} stream not found in {path}"
                )
            data = ole.openstream(COMPONENT_INFO_STREAM).read()
    except OSError as exc:
        raise TspParseError(f"Failed to read {path}: {exc}") from exc

    text = data[: len(data) - len(data) % 2].decode(
        "utf-16-le", errors="replace"
    )
    start = text.find("<")
    if start < 0:
        raise TspParseError(f"No XML data found in {COMPONENT_INFO_STREAM} of {path}")
    return text[start:].replace("\x00", "")


def parse_xml(text: str) -> etree._Element:
    """Parse *text* without resolving entities or touching the network.

    Raises:
        TspParseError: The text is not well-formed or declares entities.
    """
    text = text.lstrip("\ufeff")
    if "<!ENTITY" in text:
        raise TspParseError("External entities detected in XML")
    parser = etree.XMLParser(
        resolve_entities=False, no_network=True, huge_tree=False
    )
    # lxml refuses str input that carries an encoding declaration
    payload = _XML_DECLARATION.sub("", text, count=1).encode("utf-8")
    try:
        return etree.fromstring(payload, parser)
    except etree.XMLSyntaxError as exc:
        raise TspParseError(f"Fatal XML parse error: {exc}") from exc


def load_gui_test_document(test_dir: Path) -> etree._Element | None:
    """Parse ``Test.tsp`` of *test_dir*; ``None`` when the file does not exist."""
    tsp = find_file_ignore_case(test_dir, GUI_TEST_FILE)
    if tsp is None:
        logger.warning("File %s does not exist", test_dir / GUI_TEST_FILE)
        return None
    try:
        return parse_xml(extract_xml_from_cfb(tsp))
    except TspParseError as exc:
        logger.error("Error parsing document %s: %s", tsp, exc)
        raise


def load_api_test_document(test_dir: Path) -> etree._Element | None:
    """Parse ``actions.xml`` of *test_dir*; ``None`` when the file does not exist."""
    actions_file = find_file_ignore_case(test_dir, API_ACTIONS_FILE)
    if actions_file is None:
        return None
    try:
        return parse_xml(read_text_file(actions_file))
    except TspParseError as exc:
        logger.error("Error parsing document %s: %s", actions_file, exc)
        raise


def load_test_document(
    test_dir: Path, test_type: TestType
) -> etree._Element | None:
    """Load the metadata document of a test directory.

    Raises:
        TspParseError: A GUI test has no parsable ``Test.tsp``.
    """
    if test_type == TestType.GUI:
        doc = load_gui_test_document(test_dir)
        if doc is None:
            raise TspParseError("No document parsed")
        return doc
    return load_api_test_document(test_dir)


def _text(element: etree._Element | None) -> str:
    if element is None:
        return ""
    return "".join(element.itertext())


def _first(doc: etree._Element, tag: str) -> etree._Element | None:
    return next(doc.iter(f"{{*}}{tag}"), None)


# ---------------------------------------------------------------------------
# Descriptions
# ---------------------------------------------------------------------------


def get_test_description(
    doc: etree._Element | None, test_type: TestType
) -> str | None:
    """Trimmed test description, or ``None`` without a document."""
    if doc is None or test_type == TestType.NONE:
        return None
    if test_type == TestType.GUI:
        description = _text(_first(doc, "Description"))
    else:
        description = ""
        for action in doc.iter("{*}Action"):
            if action.get("internalName") == "MainAction":
                description = action.get("description") or ""
                break
    return description.strip()


def to_html_description(description: str | None) -> str | None:
    """Wrap multi-line descriptions as ``<p>`` paragraphs for the server's rich text."""
    if description is None or "\n" not in description:
        return description
    paragraphs = "".join(f"<p>{line}</p>\n" for line in description.split("\n"))
    return f"<html><body>{paragraphs}</body></html>"


# ---------------------------------------------------------------------------
# Actions and parameters
# ---------------------------------------------------------------------------


def parse_action_components(
    doc: etree._Element, test_name: str
) -> dict[str, Action]:
    """Map action name to a NEW ``Action`` for every ``Component`` but ``Action0``."""
    actions: dict[str, Action] = {}
    for component in doc.iter("{*}Component"):
        name = _text(component)
        if name and name.lower() != _ACTION_0:
            actions[name] = Action(
                name=name, test_name=test_name, sync_status=SyncStatus.NEW
            )
    return actions


def fill_logical_names(
    doc: etree._Element, actions: dict[str, Action], prefix: str
) -> None:
    """Set logical names from the action ``Dependency`` entries of *doc*.

    Every action receives its repository path, with the action name standing
    in for a missing logical name.
    """
    for dependency in doc.iter("{*}Dependency"):
        if any(
            dependency.get(attr) != value
            for attr, value in _ACTION_DEPENDENCY_ATTRS.items()
        ):
            continue
        logical_name = dependency.get("Logical")
        if not logical_name:
            continue
        text = _text(dependency)
        action_name = text[: text.find("\\")] if "\\" in text else ""
        if not action_name or action_name.lower() == _ACTION_0:
            continue
        action = actions.get(action_name)
        if action is not None:
            action.logical_name = logical_name

    for action in actions.values():
        action.repository_path = build_action_repository_path(
            prefix, action.name, action.logical_name
        )


def parse_action_resource(
    resource_file: Path,
) -> tuple[list[UnitParameter], str]:
    """Read the argument list and description from an action's ``resource.mtr``."""
    doc = parse_xml(extract_xml_from_cfb(resource_file))
    params: list[UnitParameter] = []
    collection = _first(doc, "ArgumentsCollection")
    if collection is not None:
        for arg in collection:
            if not isinstance(arg.tag, str):
                continue
            direction_text = _text(_first(arg, "ArgDirection")) or "0"
            try:
                direction = ParamDirection(int(direction_text))
            except ValueError:
                direction = ParamDirection.IN
            default_node = _first(arg, "ArgDefaultValue")
            params.append(
                UnitParameter(
                    name=_text(_first(arg, "ArgName")),
                    direction=direction,
                    default_value=None
                    if default_node is None
                    else _text(default_node),
                    sync_status=SyncStatus.NEW,
                )
            )
    return params, _text(_first(doc, "Description"))


def read_parameters(test_dir: Path, actions: dict[str, Action]) -> None:
    """Attach parameters to every action; one broken action never stops the others."""
    for action_name, action in actions.items():
        resource_file = find_file_ignore_case(
            test_dir / action_name, ACTION_RESOURCE_FILE
        )
        if resource_file is None:
            logger.warning(
                "%s file for action %s does not exist",
                ACTION_RESOURCE_FILE,
                action_name,
            )
            continue
        try:
            action.parameters, action.description = parse_action_resource(
                resource_file
            )
        except TspParseError as exc:
            action.parameters = []
            logger.warning(
                "Failed to read parameters of action %s: %s", action_name, exc
            )


def parse_actions_and_parameters(
    doc: etree._Element | None, prefix: str, test_name: str, test_dir: Path
) -> list[Action]:
    if doc is None:
        logger.warning(
            "Received null gui test document, actions will not be parsed"
        )
        return []
    actions = parse_action_components(doc, test_name)
    fill_logical_names(doc, actions, prefix)
    read_parameters(test_dir, actions)
    return list(actions.values())


# ---------------------------------------------------------------------------
# Execution resources
# ---------------------------------------------------------------------------


@dataclass
class TestResources:
    """Function libraries and recovery scenarios a GUI test loads at start-up."""

    function_libraries: list[str] = field(default_factory=list)
    recovery_scenarios: list[tuple[str, str]] = field(default_factory=list)

    __test__ = False


def read_test_resources(test_dir: Path) -> TestResources:
    """Collect resources declared in ``Test.tsp``; empty when it cannot be read."""
    resources = TestResources()
    try:
        doc = load_gui_test_document(test_dir)
        if doc is None:
            raise TspParseError("No document parsed")
        for lib in doc.iter("{*}FuncLib"):
            text = _text(lib)
            if text:
                resources.function_libraries.append(str(test_dir / text))
        scenarios = _first(doc, "RecoveryScenarios")
        if scenarios is not None:
            for part in _text(scenarios).split("*"):
                fields = part.split("|")
                if len(fields) > 1:
                    resources.recovery_scenarios.append(
                        (str(test_dir / fields[0]), fields[1])
                    )
    except TspParseError as exc:
        logger.error(
            "Failed to read resources of %s: %s; continuing with empty resources",
            test_dir,
            exc,
        )
    return resources
