"""GitHub REST and artifact clients used by the event handler."""

import base64
import hashlib
import io
import json
import logging
import os
import threading
import zipfile
from pathlib import Path
from typing import Any

import requests

from ..config import Config
from ..errors import NotFoundError

logger = logging.getLogger(__name__)

ARTIFACT_SERVICE = "twirp/github.actions.results.api.v1.ArtifactService"
ARTIFACT_VERSION = 4


def _backend_ids(runtime_token: str) -> tuple[str, str]:
    """Workflow-run and job backend ids carried in the runtime token's ``scp`` claim."""
    try:
        payload = runtime_token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (IndexError, ValueError) as e:
        raise NotFoundError(f"Malformed ACTIONS_RUNTIME_TOKEN: {e}") from e
    for scope in str(claims.get("scp", "")).split(" "):
        parts = scope.split(":")
        if len(parts) == 3 and parts[0] == "Actions.Results":
            return parts[1], parts[2]
    raise NotFoundError("Backend ids not found in ACTIONS_RUNTIME_TOKEN")


def collect_files(paths: list[Path], skip_invalid_paths: bool = True) -> list[Path]:
    """Expand directories recursively; missing paths are logged or raise."""
    files: list[Path] = []
    for path in paths:
        if path.is_file():
            files.append(path)
        elif path.is_dir():
            files.extend(sorted(p for p in path.rglob("*") if p.is_file()))
        else:
            logger.error("Path does not exist: %s", path)
            if not skip_invalid_paths:
                raise NotFoundError(f"Path does not exist: {path}")
    return files


class GitHubClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.repo_api_url = (
            f"{config.github_api_url.rstrip('/')}/repos/{config.owner}/{config.repo}"
        )

    @property
    def session(self) -> requests.Session:
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            session = requests.Session()
            session.headers.update(
                {
                    "Authorization": f"Bearer {self.config.github_token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                }
            )
            self._thread_local.session = session
        return self._thread_local.session

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = self._get_session().get(
            f"{self.repo_api_url}/{path}", params=params, timeout=(10, 60)
        )
        response.raise_for_status()
        return response.json()

    def get_workflow_path(self, head_sha: str, run_id: int) -> str:
        """Workflow file path of the in-progress push run *run_id* for *head_sha*.

        Raises:
            NotFoundError: No matching in-progress run exists.
        """
        data = self._get(
            "actions/runs",
            {"event": "push", "head_sha": head_sha, "status": "in_progress"},
        )
        runs = data.get("workflow_runs") or []
        if not runs:
            raise NotFoundError(
                f"No in-progress workflow runs found for SHA {head_sha}"
            )
        for run in runs:
            if run.get("id") == run_id:
                return run["path"]
        raise NotFoundError(
            f"Current workflow run (ID: {run_id}) not found for SHA {head_sha}"
        )

    def get_workflow_run(self, run_id: int) -> dict[str, Any]:
        logger.debug("get_workflow_run: run_id='%s' ...", run_id)
        return self._get(f"actions/runs/{run_id}")

    def get_workflow_file(
        self, workflow_file_name: str, branch: str | None = None
    ) -> dict[str, Any]:
        """Contents API entry (``content``, ``encoding``) of a workflow file."""
        logger.info("get_workflow_file: '%s' ...", workflow_file_name)
        return self._get(
            f"contents/.github/workflows/{workflow_file_name}",
            {"ref": branch} if branch else None,
        )

    def get_commit(self, commit_sha: str) -> dict[str, Any]:
        return self._get(f"commits/{commit_sha}")

    def cancel_workflow_run(self, run_id: int) -> None:
        """Request cancellation of *run_id*; a refused request is only logged."""
        logger.info("cancel_workflow_run: run_id='%s' ...", run_id)
        try:
            response = self._get_session().post(
                f"{self.repo_api_url}/actions/runs/{run_id}/cancel",
                timeout=(10, 60),
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error("Cancel request failed: %s", e)

    def upload_artifact(
        self,
        parent_path: Path,
        paths: list[Path],
        artifact_name: str,
        skip_invalid_paths: bool = True,
    ) -> int:
        """Zip *paths* (relative to *parent_path*) into a workflow artifact.

        Uses the runner's artifact service, so it only works inside a job
        (``ACTIONS_RUNTIME_TOKEN`` and ``ACTIONS_RESULTS_URL`` set).

        Returns:
            The artifact id, or -1 when the upload failed.
        """
        logger.debug(
            "upload_artifact: parent_path='%s', paths=%d, name='%s' ...",
            parent_path,
            len(paths),
            artifact_name,
        )
        try:
            files = collect_files(paths, skip_invalid_paths)
            token = os.environ.get("ACTIONS_RUNTIME_TOKEN", "")
            results_url = os.environ.get("ACTIONS_RESULTS_URL", "")
            if not token or not results_url:
                raise NotFoundError(
                    "ACTIONS_RUNTIME_TOKEN and ACTIONS_RESULTS_URL must be set"
                )
            run_backend_id, job_backend_id = _backend_ids(token)
            ids = {
                "workflowRunBackendId": run_backend_id,
                "workflowJobRunBackendId": job_backend_id,
                "name": artifact_name,
            }
            service_url = f"{results_url.rstrip('/')}/{ARTIFACT_SERVICE}"
            headers = {"Authorization": f"Bearer {token}"}

            created = requests.post(
                f"{service_url}/CreateArtifact",
                json={**ids, "version": ARTIFACT_VERSION},
                headers=headers,
                timeout=(10, 60),
            )
            created.raise_for_status()
            upload_url = created.json()["signedUploadUrl"]

            buffer = io.BytesIO()
            with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
                for file in files:
                    archive.write(file, file.relative_to(parent_path).as_posix())
            payload = buffer.getvalue()
            logger.debug(
                "Uploading artifact %s with %d file(s)", artifact_name, len(files)
            )
            uploaded = requests.put(
                upload_url,
                data=payload,
                headers={"x-ms-blob-type": "BlockBlob"},
                timeout=(10, 300),
            )
            uploaded.raise_for_status()

            finalized = requests.post(
                f"{service_url}/FinalizeArtifact",
                json={
                    **ids,
                    "size": str(len(payload)),
                    "hash": f"sha256:{hashlib.sha256(payload).hexdigest()}",
                },
                headers=headers,
                timeout=(10, 60),
            )
            finalized.raise_for_status()
            artifact_id = int(finalized.json().get("artifactId") or 0)
            logger.info("Artifact %s uploaded successfully.", artifact_id)
            return artifact_id
        except (requests.RequestException, NotFoundError, OSError, ValueError, KeyError) as e:
            logger.error("upload_artifact: %s", e)
            return -1
