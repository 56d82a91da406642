"""
Configuration system for sqlsteward using Pydantic.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.connection import ConnectionConfig
from .exceptions import ConfigurationError
from .script.repository import ScriptNamingSettings


class ScriptsConfig(BaseModel):
    """Where scripts are found and how their names are interpreted."""

    locations: List[str] = Field(
        default_factory=lambda: ["scripts"],
        description="Script folders or zip/jar archives",
    )
    extensions: List[str] = Field(
        default_factory=lambda: ["sql", "ddl", "sh", "psql"],
        description="File extensions of scripts, without leading dot",
    )
    qualifiers: List[str] = Field(
        default_factory=list, description="Allowed script qualifiers besides the patch qualifier"
    )
    patch_qualifier: str = Field("patch", description="Qualifier marking patch scripts")
    preprocessing_dir: Optional[str] = Field(
        "preprocessing", description="Directory name of preprocessing scripts"
    )
    postprocessing_dir: Optional[str] = Field(
        "postprocessing", description="Directory name of postprocessing scripts"
    )
    encoding: str = Field("utf-8", description="Encoding of script files")

    @field_validator("extensions")
    @classmethod
    def validate_extensions(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("At least one script extension is required")
        for extension in v:
            if extension.startswith("."):
                raise ValueError(f"Extension '{extension}' should not start with a dot")
        return v

    def naming_settings(self) -> ScriptNamingSettings:
        return ScriptNamingSettings(
            extensions=self.extensions,
            qualifiers=self.qualifiers,
            patch_qualifier=self.patch_qualifier,
            preprocessing_dir=self.preprocessing_dir,
            postprocessing_dir=self.postprocessing_dir,
            encoding=self.encoding,
        )


class HistoryConfig(BaseModel):
    """Executed scripts table configuration."""

    table_name: str = Field("sqlsteward_scripts", description="Executed scripts table")
    schema_name: str = Field("public", description="Schema of the executed scripts table")
    auto_create: bool = Field(
        False, description="Create the executed scripts table when it does not exist"
    )


class PolicyConfig(BaseModel):
    """Policies deciding how script updates are handled."""

    use_last_modified_dates: bool = Field(
        True,
        description="Consider a script unchanged when its last modification date did not change",
    )
    allow_out_of_sequence_patches: bool = Field(
        False, description="Allow patch scripts to run after scripts with a higher index"
    )
    ignore_deletions: bool = Field(
        False, description="Ignore deleted scripts instead of treating them as updates"
    )
    from_scratch_enabled: bool = Field(
        False, description="Rebuild the database from scratch on irregular updates"
    )
    schemas: List[str] = Field(
        default_factory=lambda: ["public"],
        description="Schemas rebuilt from scratch, cleaned by clean_db and scanned by update_sequences",
    )
    acknowledge_marker: Optional[str] = Field(
        None,
        description="First line accepting a change to an executed incremental script; "
        "empty string disables acknowledged changes",
    )
    transactional_scripts: bool = Field(
        True, description="Run every SQL script in its own transaction"
    )
    clean_db: bool = Field(
        False, description="Delete the data of every table in the schemas before running scripts"
    )
    preserve_tables: List[str] = Field(
        default_factory=list,
        description="Tables whose data clean_db keeps, as table or schema.table",
    )
    update_sequences: bool = Field(
        False, description="Raise sequences below lowest_sequence_value after running scripts"
    )
    lowest_sequence_value: int = Field(
        1000, ge=1, description="Lowest value sequences are raised to by update_sequences"
    )


class RunnersConfig(BaseModel):
    """External programs running non-SQL scripts."""

    shell_interpreter: str = Field("/bin/sh", description="Interpreter of .sh scripts")
    psql_command: str = Field("psql", description="psql client running .psql scripts")
    psql_pre_script: Optional[str] = Field(
        None, description="psql file run before every .psql script, in the same session"
    )
    psql_post_script: Optional[str] = Field(
        None, description="psql file run after every .psql script, in the same session"
    )
    script_parameters: Dict[str, str] = Field(
        default_factory=dict, description="Variables passed to .psql scripts"
    )
    timeout: Optional[float] = Field(
        None, description="Seconds an external program may run before it is killed"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class StewardConfig(BaseSettings):
    """Main sqlsteward configuration."""

    debug: bool = Field(False, description="Enable debug mode")
    dry_run: bool = Field(False, description="Plan updates without executing scripts")

    database: ConnectionConfig = Field(..., description="Target database")
    scripts: ScriptsConfig = Field(
        default_factory=ScriptsConfig, description="Script locations"
    )
    history: HistoryConfig = Field(
        default_factory=HistoryConfig, description="Executed scripts table"
    )
    policy: PolicyConfig = Field(
        default_factory=PolicyConfig, description="Update policies"
    )
    runners: RunnersConfig = Field(
        default_factory=RunnersConfig, description="External script runners"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SQLSTEWARD_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "StewardConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            data = cls._expand_env_vars(data)

            config = cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        config._resolve_locations(Path(path).resolve().parent)
        return config

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def _resolve_locations(self, base_dir: Path) -> None:
        """Relative script locations and psql files are relative to the configuration file."""

        def resolve(location: str) -> str:
            return str(location) if Path(location).is_absolute() else str(base_dir / location)

        self.scripts.locations = [resolve(location) for location in self.scripts.locations]
        if self.runners.psql_pre_script:
            self.runners.psql_pre_script = resolve(self.runners.psql_pre_script)
        if self.runners.psql_post_script:
            self.runners.psql_post_script = resolve(self.runners.psql_post_script)

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        if not self.scripts.locations:
            raise ConfigurationError("At least one script location is required")

        for location in self.scripts.locations:
            if not Path(location).exists():
                raise ConfigurationError(f"Script location {location} does not exist")

        if self.policy.from_scratch_enabled and not self.policy.schemas:
            raise ConfigurationError(
                "From-scratch updates are enabled but no schemas are configured to rebuild"
            )

        if self.policy.clean_db and not self.policy.schemas:
            raise ConfigurationError("Cleaning the database is enabled but no schemas are configured")

        for psql_file in (self.runners.psql_pre_script, self.runners.psql_post_script):
            if psql_file and not Path(psql_file).is_file():
                raise ConfigurationError(f"psql file {psql_file} does not exist")

        pre, post = self.scripts.preprocessing_dir, self.scripts.postprocessing_dir
        if pre and post and pre.lower() == post.lower():
            raise ConfigurationError(
                f"Preprocessing and postprocessing scripts can't share directory '{pre}'"
            )

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_none=True), f, default_flow_style=False, indent=2, sort_keys=False
            )
