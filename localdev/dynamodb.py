"""LocalStack DynamoDB table initialisation through the AWS CLI.

LocalStack accepts any credentials, so every call forces the ``test``/``test``
pair. Creation is idempotent: an existing table is left alone.
"""

from __future__ import annotations

import json
import os
import subprocess
import time
import typing as typ

from localdev import console
from localdev.logging import get_logger, log_debug
from localdev.validation import LocalStackUnavailableError, require_exe

if typ.TYPE_CHECKING:
    from localdev.config import DynamoDBConfig

logger = get_logger(__name__)

_AWS_TIMEOUT = 30
_WAIT_TIMEOUT = 300

TABLE_SUMMARY_QUERY = "Table.{TableName:TableName,TableStatus:TableStatus,ItemCount:ItemCount}"


def aws_env(cfg: DynamoDBConfig) -> dict[str, str]:
    """Return the process environment with LocalStack credentials."""
    env = dict(os.environ)
    env.update(
        AWS_ACCESS_KEY_ID="test",
        AWS_SECRET_ACCESS_KEY="test",  # noqa: S106
        AWS_DEFAULT_REGION=cfg.region,
    )
    return env


def _dynamodb(
    cfg: DynamoDBConfig,
    *args: str,
    check: bool = False,
    capture: bool = True,
    timeout: float = _AWS_TIMEOUT,
) -> subprocess.CompletedProcess[str]:
    command = [
        "aws",
        "dynamodb",
        *args,
        "--endpoint-url",
        cfg.endpoint,
        "--region",
        cfg.region,
    ]
    log_debug(logger, "%s", " ".join(command))
    # S603/S607: aws via PATH is standard; args from configuration
    return subprocess.run(  # noqa: S603
        command,
        env=aws_env(cfg),
        capture_output=capture,
        text=True,
        check=check,
        timeout=timeout,
    )


def localstack_ready(cfg: DynamoDBConfig) -> bool:
    """Return True when ``list-tables`` succeeds."""
    try:
        return _dynamodb(cfg, "list-tables").returncode == 0
    except subprocess.TimeoutExpired:
        return False


def wait_for_localstack(cfg: DynamoDBConfig) -> None:
    """Poll LocalStack until DynamoDB answers.

    Raises
    ------
    LocalStackUnavailableError
        After ``cfg.ready_attempts`` failed polls.

    """
    console.info("Waiting for LocalStack to be ready...")
    for attempt in range(1, cfg.ready_attempts + 1):
        if localstack_ready(cfg):
            console.success("LocalStack DynamoDB service is ready!")
            return
        console.info(f"Attempt {attempt}/{cfg.ready_attempts}: LocalStack not ready yet...")
        time.sleep(cfg.ready_interval)
    msg = f"LocalStack failed to become ready after {cfg.ready_attempts} attempts"
    raise LocalStackUnavailableError(msg)


def table_exists(cfg: DynamoDBConfig) -> bool:
    """Return True when ``describe-table`` finds the table."""
    return _dynamodb(cfg, "describe-table", "--table-name", cfg.table_name).returncode == 0


def index_sort_keys(cfg: DynamoDBConfig) -> list[str]:
    """Return ``LSI1SK`` .. ``LSI<n>SK``."""
    return [f"LSI{n}SK" for n in range(1, cfg.local_secondary_indexes + 1)]


def attribute_definitions(cfg: DynamoDBConfig) -> list[str]:
    """Return shorthand attribute definitions; every key is a string."""
    return [
        f"AttributeName={name},AttributeType=S"
        for name in ("PK", "SK", *index_sort_keys(cfg))
    ]


def local_secondary_indexes(cfg: DynamoDBConfig) -> list[dict[str, typ.Any]]:
    """Return LSI definitions sharing ``PK`` with one sort key each."""
    return [
        {
            "IndexName": sort_key.removesuffix("SK"),
            "KeySchema": [
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": sort_key, "KeyType": "RANGE"},
            ],
            "Projection": {"ProjectionType": "ALL"},
        }
        for sort_key in index_sort_keys(cfg)
    ]


def create_table_args(cfg: DynamoDBConfig) -> list[str]:
    """Arguments for ``aws dynamodb create-table``."""
    return [
        "create-table",
        "--table-name",
        cfg.table_name,
        "--attribute-definitions",
        *attribute_definitions(cfg),
        "--key-schema",
        "AttributeName=PK,KeyType=HASH",
        "AttributeName=SK,KeyType=RANGE",
        "--provisioned-throughput",
        f"ReadCapacityUnits={cfg.read_capacity},WriteCapacityUnits={cfg.write_capacity}",
        "--local-secondary-indexes",
        json.dumps(local_secondary_indexes(cfg)),
    ]


def create_table(cfg: DynamoDBConfig) -> None:
    """Create the table; raises CalledProcessError on failure."""
    console.info(f"Creating DynamoDB table: {cfg.table_name}")
    _dynamodb(cfg, *create_table_args(cfg), check=True)
    console.success(f"DynamoDB table '{cfg.table_name}' created successfully!")


def wait_for_table(cfg: DynamoDBConfig) -> None:
    """Block until the table is ACTIVE."""
    console.info("Waiting for table to become active...")
    _dynamodb(
        cfg, "wait", "table-exists", "--table-name", cfg.table_name, check=True, timeout=_WAIT_TIMEOUT
    )
    console.success(f"DynamoDB table '{cfg.table_name}' is ready for use!")


def show_table(cfg: DynamoDBConfig) -> None:
    """Print name, status and item count as an AWS CLI table."""
    console.info("Table information:")
    result = _dynamodb(
        cfg,
        "describe-table",
        "--table-name",
        cfg.table_name,
        "--query",
        TABLE_SUMMARY_QUERY,
        "--output",
        "table",
        check=True,
    )
    print(result.stdout, end="")


def init_table(cfg: DynamoDBConfig) -> bool:
    """Ensure the table exists and is active.

    Returns
    -------
    bool
        True when the table was created by this call, False when it already
        existed.

    """
    console.banner(console.paint("🗄️  DynamoDB Table Initialization", console.Style.BLUE))
    require_exe("aws", hint="brew install awscli")
    wait_for_localstack(cfg)

    created = False
    if table_exists(cfg):
        console.warn(f"Table '{cfg.table_name}' already exists, skipping creation")
    else:
        create_table(cfg)
        created = True

    wait_for_table(cfg)
    show_table(cfg)
    return created
