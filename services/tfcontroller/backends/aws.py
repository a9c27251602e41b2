"""
AWS remote-state backend.

Ensures the S3 state bucket (versioned) and the DynamoDB lock table exist.
Uses aioboto3 for async I/O; auth relies on the SDK credential chain
(IRSA in K8s, env vars or profile locally).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import aioboto3
from botocore.exceptions import BotoCoreError

from tfcontroller.backends.protocol import require_keys
from tfcontroller.errors import BackendSetupError
from tfcontroller.logging_config import get_logger

logger = get_logger(__name__)

DOCKERFILE_ADDITIONS = """\
# AWS backend: CLI for credential retrieval and state inspection
RUN apk add --no-cache aws-cli
ENV AWS_SDK_LOAD_CONFIG=1
"""


class AWSBackend:
    """S3 + DynamoDB state backend."""

    name = "aws"

    def __init__(self, session: Any = None) -> None:
        self._session = session

    def _get_session(self) -> Any:
        if self._session is None:
            self._session = aioboto3.Session()
        return self._session

    async def setup_backend(self, config: Mapping[str, str]) -> None:
        keys = require_keys(self.name, config, "bucket", "region", "dynamoDBTable")
        endpoint_url = config.get("endpointUrl") or None
        session = self._get_session()

        try:
            async with session.client(
                "s3", region_name=keys["region"], endpoint_url=endpoint_url
            ) as s3:
                await self._ensure_bucket(s3, keys["bucket"], keys["region"])

            async with session.client(
                "dynamodb", region_name=keys["region"], endpoint_url=endpoint_url
            ) as dynamodb:
                await self._ensure_lock_table(dynamodb, keys["dynamoDBTable"])
        except BotoCoreError as e:
            # Credentials, endpoint or transport problems
            raise BackendSetupError(f"reaching AWS in {keys['region']}: {e}") from e

    async def _ensure_bucket(self, s3: Any, bucket: str, region: str) -> None:
        try:
            await s3.head_bucket(Bucket=bucket)
            logger.debug("State bucket exists", bucket=bucket)
            return
        except s3.exceptions.ClientError as e:
            if _error_code(e) not in ("404", "NoSuchBucket", "NotFound"):
                raise BackendSetupError(f"checking bucket {bucket}: {e}") from e

        create_kwargs: dict[str, Any] = {"Bucket": bucket}
        # us-east-1 rejects an explicit location constraint
        if region != "us-east-1":
            create_kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}

        try:
            await s3.create_bucket(**create_kwargs)
            await s3.put_bucket_versioning(
                Bucket=bucket,
                VersioningConfiguration={"Status": "Enabled"},
            )
        except s3.exceptions.ClientError as e:
            if _error_code(e) == "BucketAlreadyOwnedByYou":
                logger.debug("State bucket created concurrently", bucket=bucket)
                return
            raise BackendSetupError(f"creating bucket {bucket}: {e}") from e
        logger.info("Created state bucket", bucket=bucket, region=region)

    async def _ensure_lock_table(self, dynamodb: Any, table: str) -> None:
        try:
            await dynamodb.describe_table(TableName=table)
            logger.debug("Lock table exists", table=table)
            return
        except dynamodb.exceptions.ClientError as e:
            if _error_code(e) != "ResourceNotFoundException":
                raise BackendSetupError(f"checking lock table {table}: {e}") from e

        try:
            await dynamodb.create_table(
                TableName=table,
                AttributeDefinitions=[{"AttributeName": "LockID", "AttributeType": "S"}],
                KeySchema=[{"AttributeName": "LockID", "KeyType": "HASH"}],
                BillingMode="PAY_PER_REQUEST",
            )
        except dynamodb.exceptions.ClientError as e:
            if _error_code(e) == "ResourceInUseException":
                logger.debug("Lock table created concurrently", table=table)
                return
            raise BackendSetupError(f"creating lock table {table}: {e}") from e
        logger.info("Created lock table", table=table)

    def get_dockerfile_additions(self) -> str:
        return DOCKERFILE_ADDITIONS


def _error_code(exc: Any) -> str:
    return exc.response.get("Error", {}).get("Code", "")
