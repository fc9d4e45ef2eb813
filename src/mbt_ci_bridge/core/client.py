import base64
import json
import logging
import threading
import time
from typing import Any, Iterable
from urllib.parse import quote

import requests

from ..config import Config
from ..discovery.models import Folder, Unit
from ..discovery.paths import escape_query_value
from ..errors import NotFoundError
from ..mbt.models import MbtTestData
from .entities import CiJob, CiServer, Executor
from .query import NULL, Query

logger = logging.getLogger(__name__)

GITHUB_ACTIONS = "github_actions"
PLUGIN_VERSION = "25.2.3"
CLIENT_TYPE_HEADER = {"HPECLIENTTYPE": "HPE_CI_CLIENT"}

MODEL_ITEMS = "model_items"
MODEL_ITEM = "model_item"
MODEL_FOLDER = "model_folder"
ENTITY_PARAMETERS = "entity_parameters"
GIT_MIRROR_FOLDER_LOGICAL_NAME = "mbt.discovery.unit.default_folder_name"
UFT_TEST_RUNNER = "uft_test_runner"

READ_PAGE_SIZE = 1000
WRITE_CHUNK_SIZE = 100

UNIT_FIELDS = [
    "id",
    "name",
    "description",
    "repository_path",
    "parent",
    "test_runner",
]
CI_JOB_FIELDS = "id,ci_id,name,ci_server{name,instance_id}"


def partition(items: list, size: int) -> list[list]:
    """Split *items* into consecutive chunks of at most *size* elements."""
    return [items[i : i + size] for i in range(0, len(items), size)]


class TestManagementClient:
    """Blocking REST client for the test-management server.

    Every method performs plain ``requests`` calls; async callers wrap them
    with ``run_sync``. HTTP errors propagate from ``raise_for_status()``.
    """

    __test__ = False

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        base = config.server_url.rstrip("/")
        ss, ws = config.shared_space, config.workspace
        self.base_url = base
        self.api_url = f"{base}/api/shared_spaces/{ss}/workspaces/{ws}"
        self.internal_api_url = (
            f"{base}/internal-api/shared_spaces/{ss}/workspaces/{ws}"
        )
        self.analytics_url = (
            f"{base}/internal-api/shared_spaces/{ss}/analytics/ci"
        )

    @property
    def session(self) -> requests.Session:
        """Signed-in session of the current thread."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local, signed-in requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(CLIENT_TYPE_HEADER)
        session.verify = not self.config.insecure
        response = session.post(
            f"{self.base_url}/authentication/sign_in",
            json={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
            timeout=(10, 60),
        )
        response.raise_for_status()
        return session

    def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        data: str | bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (``None`` if empty)."""
        session = self._get_session()
        response = session.request(
            method,
            url,
            params=params,
            json=json_body,
            data=data,
            headers=headers,
            timeout=(10, 60),
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Generic collection access
    # ------------------------------------------------------------------

    def _collection_url(self, collection: str) -> str:
        return f"{self.api_url}/{collection}"

    @staticmethod
    def _query_params(
        query: Query | None,
        fields: Iterable[str] | str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if query is not None:
            params["query"] = f'"{query.build()}"'
        if fields:
            params["fields"] = fields if isinstance(fields, str) else ",".join(fields)
        if limit is not None:
            params["limit"] = limit
        if offset is not None:
            params["offset"] = offset
        if order_by:
            params["order_by"] = order_by
        return params

    def get_entities(
        self,
        collection: str,
        query: Query | None = None,
        fields: Iterable[str] | str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Single-page GET of a collection."""
        result = self._request(
            "GET",
            self._collection_url(collection),
            params=self._query_params(query, fields, limit=limit),
        )
        return (result or {}).get("data") or []

    def fetch_entities(
        self,
        collection: str,
        query: Query | None = None,
        fields: Iterable[str] | str | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch every matching entity, paging by id in pages of 1000.

        Paging stops at the first page shorter than the page size.
        """
        logger.debug("fetch_entities: collection=%s ...", collection)
        entities: list[dict[str, Any]] = []
        while True:
            try:
                result = self._request(
                    "GET",
                    self._collection_url(collection),
                    params=self._query_params(
                        query,
                        fields,
                        limit=READ_PAGE_SIZE,
                        offset=len(entities),
                        order_by="id",
                    ),
                )
            except requests.RequestException as e:
                logger.error(
                    "Error fetching entities from collection '%s': %s",
                    collection,
                    e,
                )
                raise
            page = (result or {}).get("data") or []
            entities.extend(page)
            if len(page) < READ_PAGE_SIZE:
                return entities

    def post_entities(
        self,
        collection: str,
        entries: list[dict[str, Any]],
        fields: Iterable[str] | str | None = None,
    ) -> list[dict[str, Any]]:
        """Create *entries* in chunks of 100; returns the created entities."""
        logger.debug(
            "post_entities: collection=%s, length=%d ...",
            collection,
            len(entries),
        )
        results: list[dict[str, Any]] = []
        for chunk in partition(entries, WRITE_CHUNK_SIZE):
            result = self._request(
                "POST",
                self._collection_url(collection),
                params=self._query_params(None, fields),
                json_body={"data": chunk},
            )
            results.extend((result or {}).get("data") or [])
        return results

    def put_entities(
        self,
        collection: str,
        entries: list[dict[str, Any]],
        fields: Iterable[str] | str | None = None,
    ) -> list[dict[str, Any]]:
        """Bulk-update *entries* (each carrying its ``id``) in chunks of 100."""
        logger.debug(
            "put_entities: collection=%s, length=%d ...",
            collection,
            len(entries),
        )
        results: list[dict[str, Any]] = []
        for chunk in partition(entries, WRITE_CHUNK_SIZE):
            result = self._request(
                "PUT",
                self._collection_url(collection),
                params=self._query_params(None, fields),
                json_body={"data": chunk},
            )
            results.extend((result or {}).get("data") or [])
        return results

    def validate_connection(self) -> str:
        """
        Validate connection by reading the CI connectivity status.
        Returns the server version string if successful.
        """
        result = self._request(
            "GET", f"{self.analytics_url}/servers/connectivity/status"
        )
        return str((result or {}).get("octaneVersion") or "")

    # ------------------------------------------------------------------
    # Units and folders
    # ------------------------------------------------------------------

    def fetch_units(self, query: Query | None) -> list[Unit]:
        units = [
            Unit.from_api(u)
            for u in self.fetch_entities(MODEL_ITEMS, query, UNIT_FIELDS)
        ]
        for unit in units:
            logger.debug("Unit: %s", unit)
        return units

    def fetch_units_by_scm_repository(self, scm_repository_id: str) -> list[Unit]:
        """All units of a repository; folders are excluded by their null path."""
        query = (
            Query.field("scm_repository")
            .equal(Query.field("id").equal(int(scm_repository_id)))
            .and_(Query.field("repository_path").not_equal(NULL))
        )
        return self.fetch_units(query)

    def fetch_units_from_folders(
        self, scm_repository_id: str, folder_names: Iterable[str]
    ) -> list[Unit]:
        names = list(folder_names)
        if not names:
            return []
        logger.debug(
            "fetch_units_from_folders: scm_repository_id=%s ...",
            scm_repository_id,
        )
        by_parent = Query.any_of(
            [
                Query.field("parent").equal(
                    Query.field("name").equal(escape_query_value(name))
                )
                for name in names
            ]
        )
        query = Query.field("scm_repository").equal(
            Query.field("id").equal(int(scm_repository_id))
        )
        return self.fetch_units(query.and_(by_parent))

    def get_runner_dedicated_folder(self, executor_id: str) -> Folder | None:
        query = (
            Query.field("test_runner")
            .equal(Query.field("id").equal(int(executor_id)))
            .and_(Query.field("subtype").equal(MODEL_FOLDER))
        )
        data = self.get_entities(MODEL_ITEMS, query, ["id", "name"], limit=1)
        return Folder.from_api(data[0]) if data else None

    def get_git_mirror_folder(self) -> Folder | None:
        query = Query.field("logical_name").equal(GIT_MIRROR_FOLDER_LOGICAL_NAME)
        data = self.get_entities(MODEL_ITEMS, query, ["id", "name"], limit=1)
        return Folder.from_api(data[0]) if data else None

    def fetch_child_folders(
        self, parent: Folder, name_filters: Iterable[str] | None = None
    ) -> list[Folder]:
        query = (
            Query.field("parent")
            .equal(Query.field("id").equal(int(parent.id)))
            .and_(Query.field("subtype").equal(MODEL_FOLDER))
        )
        names = list(name_filters or [])
        if names:
            query = query.and_(
                Query.field("name").in_([escape_query_value(n) for n in names])
            )
        return [
            Folder.from_api(f)
            for f in self.fetch_entities(
                MODEL_ITEMS, query, ["id", "name", "subtype"]
            )
        ]

    def create_folders(
        self, names: Iterable[str], parent: Folder
    ) -> dict[str, Folder]:
        """Create one model folder per name under *parent*; returns them by name."""
        bodies = [
            {
                "type": MODEL_ITEM,
                "subtype": MODEL_FOLDER,
                "name": name,
                "parent": {
                    "id": parent.id,
                    "type": MODEL_ITEM,
                    "name": parent.name,
                },
            }
            for name in sorted(set(names))
        ]
        if not bodies:
            return {}
        logger.debug(
            "create_folders: size=%d, parent=%s ...", len(bodies), parent.name
        )
        created = self.post_entities(MODEL_ITEMS, bodies, ["id", "name"])
        folders = [Folder.from_api(f) for f in created]
        return {f.name: f for f in folders}

    def update_folders(self, folders: list[dict[str, Any]]) -> list[Folder]:
        if not folders:
            return []
        logger.debug("Updating %d folders ...", len(folders))
        updated = self.put_entities(MODEL_ITEMS, folders)
        return [Folder.from_api(f) for f in updated]

    def create_units(
        self, units: list[dict[str, Any]], params: list[dict[str, Any]]
    ) -> list[Unit]:
        """Create units, then their parameters linked by repository path.

        Each parameter body carries ``model_item = {"repository_path": p}``
        until the unit with path ``p`` exists; it is then re-pointed at the
        created unit before the parameter batch is posted.
        """
        logger.debug("create_units: length=%d ...", len(units))
        created = self.post_entities(MODEL_ITEMS, units, ["repository_path"])
        by_path: dict[str, dict[str, Any]] = {}
        for unit in created:
            if not unit:
                logger.warning("Null unit found in the creation response")
                continue
            path = unit.get("repository_path")
            if not path:
                logger.warning("Unit without repository_path found: %s", unit.get("id"))
                continue
            if path in by_path:
                logger.warning("Duplicate repository_path found: %s", path)
            by_path[path] = unit
        if not by_path:
            return []

        logger.info("Successfully added %d new units.", len(by_path))
        to_post: list[dict[str, Any]] = []
        for param in params:
            path = (param.get("model_item") or {}).get("repository_path")
            parent = by_path.get(path) if path else None
            if parent is None:
                logger.warning(
                    "Unit parameter %s has no matching model_item.repository_path.",
                    param.get("name"),
                )
                continue
            to_post.append(
                {
                    **param,
                    "model_item": {
                        "data": [{"id": parent["id"], "type": MODEL_ITEM}]
                    },
                }
            )
        if to_post:
            logger.info("Creating %d new unit parameters ...", len(to_post))
            created_params = self.post_entities(ENTITY_PARAMETERS, to_post)
            logger.info(
                "Successfully added %d new unit parameters.", len(created_params)
            )
        return [Unit.from_api(u) for u in by_path.values()]

    def update_units(self, units: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not units:
            return []
        logger.debug("update_units: length=%d ...", len(units))
        return self.put_entities(MODEL_ITEMS, units)

    # ------------------------------------------------------------------
    # CI server, job and runner
    # ------------------------------------------------------------------

    @property
    def repo_url(self) -> str:
        """Repository URL without the ``.git`` suffix, as stored on CI servers."""
        return self.config.repo_url.removesuffix(".git")

    def get_ci_server(self, instance_id: str) -> CiServer | None:
        logger.debug("get_ci_server: instance_id=%s ...", instance_id)
        query = Query.field("instance_id").equal(escape_query_value(instance_id))
        data = self.get_entities(
            "ci_servers", query, ["instance_id", "url"], limit=1
        )
        return CiServer.model_validate(data[0]) if data else None

    def get_or_create_ci_server(self, instance_id: str, name: str) -> CiServer:
        repo_url = self.repo_url
        logger.debug(
            "get_or_create_ci_server: instance_id=[%s], name=[%s], url=[%s] ...",
            instance_id,
            name,
            repo_url,
        )
        query = (
            Query.field("instance_id")
            .equal(escape_query_value(instance_id))
            .and_(Query.field("server_type").equal(GITHUB_ACTIONS))
            .and_(Query.field("url").equal(escape_query_value(repo_url)))
        )
        data = self.get_entities(
            "ci_servers",
            query,
            ["instance_id", "plugin_version", "url", "is_connected"],
            limit=1,
        )
        if data:
            return CiServer.model_validate(data[0])

        created = self.post_entities(
            "ci_servers",
            [
                {
                    "name": name,
                    "instance_id": instance_id,
                    "server_type": GITHUB_ACTIONS,
                    "url": repo_url,
                }
            ],
            [
                "id",
                "name",
                "instance_id",
                "plugin_version",
                "url",
                "is_connected",
                "server_type",
            ],
        )
        if not created:
            raise NotFoundError("Could not create the CI server entity.")
        self.update_plugin_version(instance_id)
        return CiServer.model_validate(
            {**created[0], "plugin_version": PLUGIN_VERSION}
        )

    def update_plugin_version(self, instance_id: str) -> None:
        """Report the bridge version for a freshly created CI server."""
        logger.debug("Updating CI server plugin_version to '%s'", PLUGIN_VERSION)
        self._request(
            "GET",
            f"{self.analytics_url}/servers/{instance_id}/tasks"
            f"?self-type={GITHUB_ACTIONS}&api-version=1&sdk-version="
            f"&plugin-version={PLUGIN_VERSION}"
            f"&self-url={quote(self.config.repo_url, safe='')}"
            f"&client-id={self.config.client_id}&client-server-user=",
        )

    def get_ci_job(self, ci_id: str, ci_server_id: str) -> CiJob | None:
        logger.debug(
            "get_ci_job: ci_id='%s', ci_server.id='%s' ...", ci_id, ci_server_id
        )
        query = (
            Query.field("ci_id")
            .equal(escape_query_value(ci_id))
            .and_(
                Query.field("ci_server").equal(
                    Query.field("id").equal(int(ci_server_id))
                )
            )
        )
        data = self.get_entities("ci_jobs", query, CI_JOB_FIELDS)
        return CiJob.model_validate(data[0]) if data else None

    def create_ci_job(
        self,
        name: str,
        ci_id: str,
        ci_server_id: str,
        branch: str,
        parameters: list[dict[str, Any]] | None = None,
    ) -> CiJob:
        logger.debug(
            "create_ci_job: ci_id='%s', ci_server.id='%s' ...", ci_id, ci_server_id
        )
        body = {
            "name": name,
            "parameters": parameters or [],
            "ci_id": ci_id,
            "ci_server": {"id": ci_server_id, "type": "ci_server"},
            "branch": branch,
        }
        created = self.post_entities("ci_jobs", [body], CI_JOB_FIELDS)
        if not created:
            raise NotFoundError("Could not create the CI job entity.")
        return CiJob.model_validate(created[0])

    def get_or_create_ci_job(
        self, name: str, ci_id: str, ci_server: CiServer, branch: str
    ) -> CiJob:
        job = self.get_ci_job(ci_id, ci_server.id)
        if job is not None:
            return job
        return self.create_ci_job(name, ci_id, ci_server.id, branch)

    def get_executor(
        self, ci_server_id: str, name: str, subtype: str = UFT_TEST_RUNNER
    ) -> Executor | None:
        logger.debug("get_executor: ci_server_id=%s, name=%s ...", ci_server_id, name)
        query = (
            Query.field("ci_server")
            .equal(Query.field("id").equal(int(ci_server_id)))
            .and_(Query.field("name").equal(escape_query_value(name)))
            .and_(Query.field("subtype").equal(subtype))
        )
        data = self.get_entities(
            "executors",
            query,
            [
                "id",
                "name",
                "subtype",
                "framework",
                "scm_repository",
                "ci_job",
                "ci_server",
            ],
            limit=1,
        )
        return Executor.model_validate(data[0]) if data else None

    def create_mbt_test_runner(
        self, name: str, ci_server_id: str, ci_job: CiJob
    ) -> Executor:
        body = {
            "name": name,
            "subtype": UFT_TEST_RUNNER,
            "framework": {"id": "list_node.je.framework.mbt", "type": "list_node"},
            "ci_server": {"id": ci_server_id, "type": "ci_server"},
            "ci_job": {"id": ci_job.id, "type": "ci_job"},
            "jobCiId": ci_job.ci_id,
            "scm_type": 2,  # git
            "scm_url": self.config.repo_url,
        }
        logger.debug("create_mbt_test_runner: %s ...", body)
        entry = self._request(
            "POST",
            f"{self.internal_api_url}/je/test_runners/uft",
            json_body=body,
        )
        if not entry or entry.get("total_count") == 0:
            raise NotFoundError("Could not create the test runner entity.")
        if "data" in entry:
            entry = entry["data"][0]
        return Executor.model_validate(entry)

    def get_or_create_test_runner(
        self, name: str, ci_server_id: str, ci_job: CiJob
    ) -> Executor:
        executor = self.get_executor(ci_server_id, name, UFT_TEST_RUNNER)
        if executor is not None:
            return executor
        return self.create_mbt_test_runner(name, ci_server_id, ci_job)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def get_mbt_test_suite_data(self, suite_run_id: int) -> dict[int, MbtTestData]:
        """Fetch the composition of every run of a suite run.

        The server answers with ``{runId: base64(json)}``.

        Raises:
            ValueError: An entry is not valid base64 JSON.
        """
        logger.debug("get_mbt_test_suite_data: suite_run_id=%s ...", suite_run_id)
        result = self._request(
            "GET", f"{self.api_url}/suite_runs/{suite_run_id}/get_suite_data"
        )
        decoded: dict[int, MbtTestData] = {}
        for run_id, encoded in (result or {}).items():
            try:
                text = base64.b64decode(encoded).decode("utf-8")
                logger.debug("%s: %s", run_id, text)
                decoded[int(run_id)] = MbtTestData.model_validate(json.loads(text))
            except ValueError as e:
                logger.error(
                    "Failed to decode or parse the data of run %s: %s", run_id, e
                )
                raise
        return decoded

    def send_events(
        self, events: list[dict[str, Any]], instance_id: str, url: str
    ) -> None:
        logger.debug(
            "Sending events to server-side app (instance_id: %s): %s",
            instance_id,
            events,
        )
        body = {
            "server": {
                "instanceId": instance_id,
                "type": GITHUB_ACTIONS,
                "url": url,
                "version": PLUGIN_VERSION,
                "sendingTime": int(time.time() * 1000),
            },
            "events": events,
        }
        self._request("PUT", f"{self.analytics_url}/events", json_body=body)

    def send_test_results(self, xml: str) -> None:
        """Publish a ``test_result`` document to the result ingestion API.

        The endpoint answers with a task status, not an entity list, so the
        body is only logged.
        """
        response = self._get_session().post(
            f"{self.api_url}/test-results",
            params={"skip-errors": "true"},
            data=xml.encode("utf-8"),
            headers={"Content-Type": "application/xml"},
            timeout=(10, 60),
        )
        response.raise_for_status()
        logger.debug("Test results accepted: %s", response.text)
