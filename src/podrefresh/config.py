"""Application configuration for podrefresh."""

from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, Profile, configure_logging
from safir.pydantic import HumanTimedelta

from .constants import (
    DEFAULT_OWNER_KINDS,
    ENV_PREFIX,
    KUBERNETES_REQUEST_TIMEOUT,
    REGISTRY_REQUEST_TIMEOUT,
    ROOT_LOGGER,
)
from .models.domain.docker import Platform

__all__ = ["Config", "EnvFirstSettings"]


class EnvFirstSettings(BaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX, extra="forbid", validate_by_name=True
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Init parameters come
        from the YAML configuration file, and environment variables take
        precedence over them.
        """
        return (env_settings, init_settings)


class Config(EnvFirstSettings):
    """Configuration for podrefresh."""

    debug: Annotated[
        bool,
        Field(
            title="Show debug output and log style",
            description=(
                "If True, then log level will be set to debug and will"
                " non-structured, human-readable output."
            ),
        ),
    ] = False

    dry_run: Annotated[
        bool,
        Field(
            title="Report rather than delete pods",
            validation_alias=AliasChoices(ENV_PREFIX + "DRY_RUN", "dryRun"),
        ),
    ] = False

    log_profile: Annotated[
        Profile,
        Field(
            title="Logging profile",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_PROFILE", "logProfile"
            ),
        ),
    ] = Profile.production

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            validation_alias=AliasChoices(
                ENV_PREFIX + "LOG_LEVEL", "logLevel"
            ),
        ),
    ] = LogLevel.INFO

    add_timestamp: Annotated[
        bool,
        Field(
            title="Add timestamp to log lines",
            validation_alias=AliasChoices(
                ENV_PREFIX + "ADD_TIMESTAMP", "addTimestamp"
            ),
        ),
    ] = False

    alert_hook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook URL used for sending alerts",
            description=(
                "An https URL, which should be considered secret."
                " If not set or set to `None`, this feature will be disabled."
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "ALERT_HOOK", "alertHook"
            ),
        ),
    ] = None

    page_size: Annotated[
        int,
        Field(
            title="Pods per list request",
            gt=0,
            validation_alias=AliasChoices(
                ENV_PREFIX + "PAGE_SIZE", "pageSize"
            ),
        ),
    ] = 500

    queue_size: Annotated[
        int,
        Field(
            title="Maximum pods waiting to be checked",
            description=(
                "Listing pods pauses when this many listed pods have not yet"
                " been examined."
            ),
            gt=0,
            validation_alias=AliasChoices(
                ENV_PREFIX + "QUEUE_SIZE", "queueSize"
            ),
        ),
    ] = 1000

    owner_kinds: Annotated[
        frozenset[str],
        Field(
            title="Owner kinds of pods that may be deleted",
            description=(
                "Only pods whose first owner reference is of one of these"
                " kinds are checked, since their owners recreate them."
            ),
            validation_alias=AliasChoices(
                ENV_PREFIX + "OWNER_KINDS", "ownerKinds"
            ),
        ),
    ] = DEFAULT_OWNER_KINDS

    platform: Annotated[
        Platform,
        Field(
            title="Required image platform",
            description=(
                "Multi-platform images must include an image for this"
                " platform."
            ),
        ),
    ] = Platform()

    digest_ttl: Annotated[
        HumanTimedelta | None,
        Field(
            title="How long to cache image digests",
            description="If not set, digests are cached for the whole run.",
            validation_alias=AliasChoices(
                ENV_PREFIX + "DIGEST_TTL", "digestTtl"
            ),
        ),
    ] = None

    kubernetes_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Timeout for Kubernetes API calls",
            validation_alias=AliasChoices(
                ENV_PREFIX + "KUBERNETES_TIMEOUT", "kubernetesTimeout"
            ),
        ),
    ] = KUBERNETES_REQUEST_TIMEOUT

    registry_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Timeout for Docker registry requests",
            validation_alias=AliasChoices(
                ENV_PREFIX + "REGISTRY_TIMEOUT", "registryTimeout"
            ),
        ),
    ] = REGISTRY_REQUEST_TIMEOUT

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct the configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding configuration.
        """
        with path.open("r") as f:
            config = cls.model_validate(yaml.safe_load(f) or {})
        config.configure_logging()
        return config

    def configure_logging(self) -> None:
        """Configure logging based on the podrefresh configuration."""
        if self.debug:
            log_level = LogLevel.DEBUG
            log_profile = Profile.development
        else:
            log_level = self.log_level
            log_profile = self.log_profile

        configure_logging(
            profile=log_profile,
            log_level=log_level,
            add_timestamp=self.add_timestamp,
            name=ROOT_LOGGER,
        )
