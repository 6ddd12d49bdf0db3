"""Centralized configuration for fulltext-engine using Pydantic Settings."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fulltext_engine.search.schema import (
    TableSchema,
    doc_token_positions_schema,
    doc_tokens_schema,
    exact_postings_schema,
    fulltext_doc_mirror_schema,
    fulltext_token_stats_schema,
    lossy_postings_schema,
)


# Hard ceilings imposed by the key-value store for a single batch call.
MAX_BATCH_WRITE_ITEMS = 25
MAX_BATCH_GET_KEYS = 100


class ObservabilityCollectorConfig(BaseModel):
    """Configuration for OTLP trace export."""

    model_config = {"extra": "forbid"}

    enabled: Annotated[bool, Field(description="Enable OTLP trace export to an external collector")] = False

    otlp_protocol: Annotated[Literal["http", "grpc"], Field(description="OTLP transport protocol")] = "grpc"

    collector_endpoint: Annotated[
        str,
        Field(
            description="OTLP collector endpoint (HTTP uses /v1/traces)",
            examples=["http://localhost:4317", "http://localhost:4318/v1/traces"],
        ),
    ] = "http://localhost:4317"

    headers: Annotated[
        dict[str, str],
        Field(description="Optional headers to include with OTLP requests"),
    ] = Field(default_factory=dict)

    timeout_seconds: Annotated[int, Field(ge=1, le=60, description="OTLP exporter timeout in seconds")] = 10

    grpc_insecure: Annotated[bool, Field(description="Allow insecure gRPC (plaintext) connections")] = True

    resource_attributes: Annotated[
        dict[str, str],
        Field(description="Additional OpenTelemetry resource attributes for trace export"),
    ] = Field(default_factory=dict)


class IndexSettings(BaseSettings):
    """Strictly typed configuration loaded from ``FULLTEXT_*`` environment variables.

    Table names default to the canonical schema names and only need to be
    overridden when several deployments share one account or namespace.
    """

    model_config = SettingsConfigDict(
        env_prefix="FULLTEXT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Table names
    lossy_table_name: str = Field(default=lossy_postings_schema.table_name, min_length=1)
    exact_table_name: str = Field(default=exact_postings_schema.table_name, min_length=1)
    mirror_table_name: str = Field(default=fulltext_doc_mirror_schema.table_name, min_length=1)
    doc_tokens_table_name: str = Field(default=doc_tokens_schema.table_name, min_length=1)
    doc_token_positions_table_name: str = Field(default=doc_token_positions_schema.table_name, min_length=1)
    token_stats_table_name: str = Field(default=fulltext_token_stats_schema.table_name, min_length=1)

    # Batch sizing
    batch_write_limit: int = Field(
        default=MAX_BATCH_WRITE_ITEMS,
        ge=1,
        le=MAX_BATCH_WRITE_ITEMS,
        description="Write requests per batch write call",
    )
    batch_get_limit: int = Field(
        default=MAX_BATCH_GET_KEYS,
        ge=1,
        le=MAX_BATCH_GET_KEYS,
        description="Keys per batch get call",
    )

    # Retry policy for unprocessed items/keys
    max_retry_attempts: int | None = Field(
        default=None,
        ge=1,
        description="Re-issues allowed for unprocessed items before giving up (unset retries forever)",
    )
    retry_backoff_ms: int = Field(
        default=0,
        ge=0,
        description="Initial delay before re-issuing unprocessed items; doubles on each attempt",
    )
    retry_backoff_max_ms: int = Field(
        default=5000,
        ge=0,
        description="Upper bound for the retry delay",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error", "critical"] = Field(
        default="info", description="Root logging level"
    )
    log_json: bool = Field(default=True, description="Emit structured JSON logs")

    # Tracing
    service_name: str = Field(default="fulltext-engine", description="OpenTelemetry service.name")
    observability: ObservabilityCollectorConfig = Field(default_factory=ObservabilityCollectorConfig)

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> IndexSettings:
        if self.retry_backoff_ms > self.retry_backoff_max_ms:
            raise ValueError("FULLTEXT_RETRY_BACKOFF_MS must not exceed FULLTEXT_RETRY_BACKOFF_MAX_MS")
        return self

    def table_names(self) -> TableNames:
        return TableNames(
            lossy=self.lossy_table_name,
            exact=self.exact_table_name,
            mirror=self.mirror_table_name,
            doc_tokens=self.doc_tokens_table_name,
            doc_token_positions=self.doc_token_positions_table_name,
            token_stats=self.token_stats_table_name,
        )


@dataclass(frozen=True)
class TableNames:
    """Resolved physical table names for the six logical tables."""

    lossy: str = lossy_postings_schema.table_name
    exact: str = exact_postings_schema.table_name
    mirror: str = fulltext_doc_mirror_schema.table_name
    doc_tokens: str = doc_tokens_schema.table_name
    doc_token_positions: str = doc_token_positions_schema.table_name
    token_stats: str = fulltext_token_stats_schema.table_name

    def schemas(self) -> dict[str, TableSchema]:
        """Map each physical table name to its key layout."""
        return {
            self.lossy: lossy_postings_schema,
            self.exact: exact_postings_schema,
            self.mirror: fulltext_doc_mirror_schema,
            self.doc_tokens: doc_tokens_schema,
            self.doc_token_positions: doc_token_positions_schema,
            self.token_stats: fulltext_token_stats_schema,
        }

    def all(self) -> tuple[str, ...]:
        return (
            self.lossy,
            self.exact,
            self.mirror,
            self.doc_tokens,
            self.doc_token_positions,
            self.token_stats,
        )


@lru_cache(maxsize=1)
def get_settings() -> IndexSettings:
    """Return process-wide settings, loaded once."""
    return IndexSettings()
