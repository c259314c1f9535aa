"""Configuration for a release run.

Label names, priority descriptions and repository coordinates are
configuration, not code: forges rename labels, and the same pipeline is
reused for sibling projects. Settings come from three layers, later ones
winning:

1. Defaults declared on the models below
2. A YAML file (``load_config(path)``)
3. Environment variables for credentials and CI metadata

Example YAML:

    primary:
      name: paritytech/polkadot
      display_name: Polkadot
      local_path: .
      excluded_prefixes: ["[contracts]", "contracts:"]
    dependency:
      name: paritytech/substrate
      display_name: Substrate
    labels:
      silent: B0-silent
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from release_announcer.errors import ConfigError
from release_announcer.schemas import PriorityLevel

# ---------------------------------------------------------------------------
# Labels and descriptions
# ---------------------------------------------------------------------------

DEFAULT_PRIORITY_LABELS: dict[PriorityLevel, str] = {
    PriorityLevel.LOW: "C1-low",
    PriorityLevel.MEDIUM: "C3-medium",
    PriorityLevel.HIGH: "C7-high",
    PriorityLevel.CRITICAL: "C9-critical",
}

DEFAULT_PRIORITY_DESCRIPTIONS: dict[PriorityLevel, str] = {
    PriorityLevel.LOW: "Upgrade priority: Low (upgrade at your convenience)",
    PriorityLevel.MEDIUM: "Upgrade priority: *Medium* (timely upgrade recommended)",
    PriorityLevel.HIGH: (
        "Upgrade priority:❗ **HIGH** ❗ Please upgrade your node as soon as possible"
    ),
    PriorityLevel.CRITICAL: (
        "Upgrade priority: ❗❗ **URGENT** ❗❗ PLEASE UPGRADE IMMEDIATELY"
    ),
}


def _require_all_levels(mapping: Mapping[PriorityLevel, str], what: str) -> None:
    missing = [level.value for level in PriorityLevel if level not in mapping]
    if missing:
        raise ValueError(f"{what} missing for priority level(s): {', '.join(missing)}")


class LabelConfig(BaseModel):
    """Label names attached to changes on the forge.

    The primary and dependency repositories use different label names for
    runtime-noteworthy changes; only the dependency repository has client
    and API labels.
    """

    priority: dict[PriorityLevel, str] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_LABELS)
    )
    silent: str = "B0-silent"
    primary_runtime: str = "B2-runtimenoteworthy"
    dependency_runtime: str = "B7-runtimenoteworthy"
    dependency_client: str = "B5-clientnoteworthy"
    dependency_api: str = "B3-apinoteworthy"

    @model_validator(mode="after")
    def check_priority_labels(self) -> LabelConfig:
        """Every priority level needs a label."""
        _require_all_levels(self.priority, "Priority label")
        return self


class RepositoryConfig(BaseModel):
    """Coordinates of one repository taking part in the release.

    Attributes:
        name: Repository in "owner/name" format on the forge
        display_name: Human-readable name used in headings and titles
        local_path: Git working tree; when unset for the dependency
            repository, changes are fetched from the forge instead
        excluded_prefixes: Change lines starting with any of these are
            dropped before analysis
    """

    name: str
    display_name: str
    local_path: Path | None = None
    excluded_prefixes: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Top-level configuration
# ---------------------------------------------------------------------------


class AnnouncerConfig(BaseModel):
    """Everything a release run needs besides the version being released."""

    primary: RepositoryConfig = Field(
        default_factory=lambda: RepositoryConfig(
            name="paritytech/polkadot",
            display_name="Polkadot",
            local_path=Path("."),
            excluded_prefixes=["[contracts]", "contracts:"],
        )
    )
    dependency: RepositoryConfig = Field(
        default_factory=lambda: RepositoryConfig(
            name="paritytech/substrate",
            display_name="Substrate",
        )
    )
    labels: LabelConfig = Field(default_factory=LabelConfig)
    descriptions: dict[PriorityLevel, str] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_DESCRIPTIONS)
    )

    # Dependency range discovery
    lock_file: str = "Cargo.lock"
    dependency_lock_package: str = "sc-cli"

    # Release notes preamble
    runtimes: dict[str, str] = Field(
        default_factory=dict,
        description="Runtime display name -> source file containing spec_version",
    )
    toolchains: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Toolchain label -> command printing its version",
    )

    # Publishing
    release_title_template: str = "{display_name} {version}"
    target_commitish: str = "master"
    require_signed_tag: bool = True
    label_concurrency: int = Field(8, ge=1)

    # Credentials and CI metadata (environment only, never from YAML in practice)
    github_token: str | None = None
    github_release_token: str | None = None
    matrix_homeserver: str = "https://matrix.org"
    matrix_access_token: str | None = None
    matrix_room_id: str | None = None
    pipeline_url: str | None = None

    @model_validator(mode="after")
    def check_descriptions(self) -> AnnouncerConfig:
        """Every priority level needs a description for the banner."""
        _require_all_levels(self.descriptions, "Priority description")
        return self

    @property
    def release_token(self) -> str | None:
        """Token used to create releases (falls back to the read token)."""
        return self.github_release_token or self.github_token

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.matrix_access_token and self.matrix_room_id)

    def release_title(self, version: str) -> str:
        return self.release_title_template.format(
            display_name=self.primary.display_name, version=version
        )


# Field name -> environment variable
ENV_OVERRIDES: dict[str, str] = {
    "github_token": "GITHUB_TOKEN",
    "github_release_token": "GITHUB_RELEASE_TOKEN",
    "matrix_homeserver": "MATRIX_HOMESERVER",
    "matrix_access_token": "MATRIX_ACCESS_TOKEN",
    "matrix_room_id": "MATRIX_ROOM_ID",
    "pipeline_url": "CI_PIPELINE_URL",
}


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> AnnouncerConfig:
    """Load and validate the announcer configuration.

    Args:
        path: Optional YAML file. A missing file means "use defaults".
        env: Environment to read overrides from (defaults to os.environ).

    Returns:
        A validated AnnouncerConfig

    Raises:
        ConfigError: If the YAML is malformed or fails validation
    """
    env = os.environ if env is None else env
    raw: dict = {}

    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            try:
                raw = yaml.safe_load(config_path.read_text()) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
            if not isinstance(raw, dict):
                raise ConfigError(f"Invalid config in {path}: expected a mapping")

    for field_name, variable in ENV_OVERRIDES.items():
        value = env.get(variable)
        if value:
            raw[field_name] = value

    try:
        return AnnouncerConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid announcer config: {exc}") from exc
