"""
Google Cloud Storage remote-state backend.

google-cloud-storage is synchronous, so calls run via asyncio.to_thread.
Auth via Application Default Credentials (Workload Identity on GKE).
GCS state locking is native, so only the bucket needs to exist.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from tfcontroller.backends.protocol import require_keys
from tfcontroller.errors import BackendSetupError
from tfcontroller.logging_config import get_logger

logger = get_logger(__name__)

DOCKERFILE_ADDITIONS = """\
# GCS backend: gcloud for credential retrieval
RUN apk add --no-cache curl python3 \\
    && curl -sSL https://sdk.cloud.google.com | bash -s -- --disable-prompts --install-dir=/opt
ENV PATH=/opt/google-cloud-sdk/bin:$PATH
"""


class GCSBackend:
    """GCS bucket state backend."""

    name = "gcs"

    def __init__(self, client_factory: Any = None) -> None:
        self._client_factory = client_factory

    def _make_client(self, project: str | None) -> Any:
        if self._client_factory is not None:
            return self._client_factory(project)

        from google.cloud import storage as gcs_storage

        return gcs_storage.Client(project=project)

    async def setup_backend(self, config: Mapping[str, str]) -> None:
        bucket_name = require_keys(self.name, config, "bucket")["bucket"]
        project = config.get("project") or None
        location = config.get("location") or "US"

        def _ensure_bucket() -> bool:
            client = self._make_client(project)
            if client.lookup_bucket(bucket_name) is not None:
                return False
            bucket = client.bucket(bucket_name)
            bucket.versioning_enabled = True
            client.create_bucket(bucket, location=location)
            return True

        try:
            created = await asyncio.to_thread(_ensure_bucket)
        except Exception as e:
            raise BackendSetupError(f"ensuring bucket {bucket_name}: {e}") from e

        if created:
            logger.info("Created state bucket", bucket=bucket_name, location=location)
        else:
            logger.debug("State bucket exists", bucket=bucket_name)

    def get_dockerfile_additions(self) -> str:
        return DOCKERFILE_ADDITIONS
