"""Runtime settings loaded from `AWS_APP_*` environment variables."""

from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from typing_extensions import Annotated

from .exceptions import ValidationError

class Config(BaseSettings):
    """Settings shared by the Reconciler, Dispatcher and Aggregator.

    Examples:
        >>> Config(max_concurrency=2).max_concurrency
        2
        >>> Config(systemd_services="nginx, cron").systemd_services
        ['nginx', 'cron']
    """

    model_config = SettingsConfigDict(env_prefix="AWS_APP_", frozen=True)

    database_url: str = Field(
        default="sqlite:///aws_app.db",
        description="SQLAlchemy connection string of the Cache Store.",
    )
    aws_region_name: str = Field(default="us-east-1", description="AWS region.")
    my_owner_id: Optional[str] = Field(
        default=None, description="AWS account id owning the AMIs and snapshots."
    )
    max_spot_price: float = Field(
        default=0.20, gt=0, description="Upper limit of spot bids in USD/hour."
    )
    default_security_group: str = Field(default="default")
    spot_security_group: str = Field(default="default")
    default_key_name: Optional[str] = Field(default=None)
    script_directory: Path = Field(
        default=Path("~/.config/aws_app/scripts").expanduser(),
        description="Folder of the user-data scripts.",
    )
    ubuntu_release: str = Field(default="jammy-22.04")
    systemd_services: Annotated[List[str], NoDecode] = Field(
        default=[], description="Comma separated names of the managed units."
    )
    email_bucket: Optional[str] = Field(
        default=None, description="S3 bucket receiving inbound emails."
    )
    max_concurrency: int = Field(
        default=8, ge=1, description="Max in-flight calls per remote service."
    )
    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=0.5, ge=0, description="Seconds.")
    max_delay: float = Field(default=20, ge=0, description="Seconds.")
    call_timeout: float = Field(default=30, gt=0, description="Seconds.")
    sync_timeout: float = Field(default=600, gt=0, description="Seconds.")
    sync_workers: int = Field(default=4, ge=1)
    cache: bool = Field(
        default=False, description="Cache reference data fetches on disk."
    )
    cache_ttl: int = Field(default=60, ge=0, description="Minutes.")

    @field_validator("systemd_services", mode="before")
    @classmethod
    def split_services(cls, value):
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value

    @field_validator("script_directory", mode="after")
    @classmethod
    def expand_home(cls, value: Path) -> Path:
        return value.expanduser()

    @classmethod
    def from_env(cls) -> "Config":
        """Load settings from the environment.

        Raises:
            ValidationError: Any of the values is invalid.
        """
        try:
            return cls()
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid configuration", {"errors": e.error_count()}
            ) from e
