"""Runtime configuration for the CI bridge.

Reads server connection, GitHub and execution settings from CLI args,
environment variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    OCTANE_URL: Test-management server URL (required)
    OCTANE_SHARED_SPACE: Shared space id (required)
    OCTANE_WORKSPACE: Workspace id (required)
    OCTANE_CLIENT_ID: API client id (required)
    OCTANE_CLIENT_SECRET: API client secret (required)
    OCTANE_INSECURE: Skip SSL verification (optional, default: false)
    GITHUB_TOKEN: Token for the GitHub REST API and git checkout (required)
    GITHUB_REPOSITORY: ``owner/repo`` of the synchronised repository (required)
    GITHUB_SERVER_URL: GitHub web URL (optional, default: https://github.com)
    GITHUB_API_URL: GitHub REST URL (optional, default: https://api.github.com)
    MBT_TESTING_TOOL: ``mbt`` or ``uft`` (optional, default: mbt)
    MBT_MIN_SYNC_INTERVAL: Minutes between two discovery passes (optional, default: 2)
    RUNNER_WORKSPACE: Runner workspace holding generated MBT files (optional)
    GITHUB_WORKSPACE: Working tree to scan (optional, default: CWD)
    DIGITAL_LAB_URL / DIGITAL_LAB_EXEC_TOKEN: Mobile lab settings (optional)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

TESTING_TOOLS = ("mbt", "uft")


@dataclass
class Config:
    server_url: str
    shared_space: str
    workspace: str
    client_id: str
    client_secret: str
    github_token: str
    owner: str
    repo: str
    github_server_url: str = "https://github.com"
    github_api_url: str = "https://api.github.com"
    testing_tool: str = "mbt"
    min_sync_interval: int = 2
    insecure: bool = False
    debug: bool = False
    work_path: str = "."
    runner_workspace: str | None = None
    state_dir: str = "."
    digital_lab_url: str | None = None
    digital_lab_exec_token: str | None = None

    @property
    def repo_url(self) -> str:
        """Clone URL of the synchronised repository."""
        return f"{self.github_server_url.rstrip('/')}/{self.owner}/{self.repo}.git"


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If URL format is invalid, credentials are empty or the
            testing tool is unknown.
    """
    config.server_url = config.server_url.strip()

    if not config.server_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid server URL '{config.server_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.server_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid server URL '{config.server_url}': URL must include a hostname"
        )

    config.server_url = config.server_url.removesuffix("/")

    for field_name, env_name in (
        ("shared_space", "OCTANE_SHARED_SPACE"),
        ("workspace", "OCTANE_WORKSPACE"),
        ("client_id", "OCTANE_CLIENT_ID"),
        ("client_secret", "OCTANE_CLIENT_SECRET"),
        ("github_token", "GITHUB_TOKEN"),
        ("owner", "GITHUB_REPOSITORY"),
        ("repo", "GITHUB_REPOSITORY"),
    ):
        if not str(getattr(config, field_name)).strip():
            raise ValueError(
                f"{field_name} cannot be empty. Set {env_name} environment variable."
            )

    config.testing_tool = config.testing_tool.strip().lower()
    if config.testing_tool not in TESTING_TOOLS:
        raise ValueError(
            f"Invalid testing tool '{config.testing_tool}': must be one of {', '.join(TESTING_TOOLS)}"
        )

    if config.min_sync_interval < 0:
        raise ValueError(
            f"Invalid minimum sync interval {config.min_sync_interval}: must not be negative"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _required(
    cli_value: str | None, env_key: str, fb: dict, fb_key: str, label: str
) -> str:
    value = cli_value or os.getenv(env_key) or fb.get(fb_key)
    if not value:
        raise ValueError(
            f"{label} not found. Set {env_key} environment variable, "
            f"or add '{fb_key}' to config.yml."
        )
    return str(value).strip()


def load_config(
    url: str | None = None,
    testing_tool: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override server URL (takes precedence over env var and YAML).
        testing_tool: Override the testing tool (``mbt`` or ``uft``).
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML config file
            sections (see ``config_schema.yaml_fallbacks``).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a required value is missing after checking all
            sources, or a value is malformed.
    """
    fb = yaml_fallbacks or {}

    # --- Server connection: CLI > env > YAML > error ---

    server_url = _required(url, "OCTANE_URL", fb, "url", "Server URL")
    shared_space = _required(
        None, "OCTANE_SHARED_SPACE", fb, "shared_space", "Shared space"
    )
    workspace = _required(
        None, "OCTANE_WORKSPACE", fb, "workspace", "Workspace"
    )
    client_id = _required(
        None, "OCTANE_CLIENT_ID", fb, "client_id", "Client id"
    )
    client_secret = _required(
        None, "OCTANE_CLIENT_SECRET", fb, "client_secret", "Client secret"
    )

    # --- GitHub ---

    github_token = _required(
        None, "GITHUB_TOKEN", fb, "token", "GitHub token"
    )
    repository = os.getenv("GITHUB_REPOSITORY") or fb.get("repository")
    if not repository or "/" not in repository:
        raise ValueError(
            f"Invalid repository '{repository}': expected 'owner/repo'. "
            "Set GITHUB_REPOSITORY environment variable or add 'repository' to config.yml."
        )
    owner, repo = repository.strip().split("/", 1)

    github_server_url = (
        os.getenv("GITHUB_SERVER_URL")
        or fb.get("server_url")
        or "https://github.com"
    )
    github_api_url = (
        os.getenv("GITHUB_API_URL")
        or fb.get("api_url")
        or "https://api.github.com"
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_insecure = True
    else:
        env_insecure = get_bool_env("OCTANE_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = get_bool_env("MBT_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Discovery / execution ---

    final_tool = (
        testing_tool
        or os.getenv("MBT_TESTING_TOOL")
        or fb.get("testing_tool")
        or "mbt"
    )

    interval_raw = os.getenv("MBT_MIN_SYNC_INTERVAL")
    if interval_raw is not None:
        try:
            final_interval = int(interval_raw)
        except ValueError:
            raise ValueError(
                f"Invalid MBT_MIN_SYNC_INTERVAL '{interval_raw}': must be a number of minutes"
            ) from None
    elif "min_sync_interval" in fb:
        final_interval = int(fb["min_sync_interval"])
    else:
        final_interval = 2

    config = Config(
        server_url=server_url,
        shared_space=shared_space,
        workspace=workspace,
        client_id=client_id,
        client_secret=client_secret,
        github_token=github_token,
        owner=owner,
        repo=repo,
        github_server_url=github_server_url,
        github_api_url=github_api_url,
        testing_tool=final_tool,
        min_sync_interval=final_interval,
        insecure=final_insecure,
        debug=final_debug,
        work_path=os.getenv("GITHUB_WORKSPACE") or fb.get("work_path") or ".",
        runner_workspace=os.getenv("RUNNER_WORKSPACE")
        or fb.get("runner_workspace"),
        state_dir=fb.get("state_dir") or ".",
        digital_lab_url=os.getenv("DIGITAL_LAB_URL")
        or fb.get("digital_lab_url"),
        digital_lab_exec_token=os.getenv("DIGITAL_LAB_EXEC_TOKEN")
        or fb.get("digital_lab_exec_token"),
    )

    validate_config(config)

    return config
