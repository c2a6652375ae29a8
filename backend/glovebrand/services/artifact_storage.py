from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from glovebrand.errors import InfrastructureError
from glovebrand.schemas.branding import ArtifactLocation

logger = logging.getLogger(__name__)


def job_artifact_path(job_id: str, filename: str) -> str:
    return f"jobs/{job_id}/{filename}"


class ArtifactStore(Protocol):
    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> ArtifactLocation: ...

    def get(self, path: str) -> bytes: ...


def put_json(storage: ArtifactStore, path: str, payload: Any) -> ArtifactLocation:
    data = json.dumps(payload, indent=2, sort_keys=False, default=str).encode("utf-8")
    return storage.put(path, data, "application/json")


class ArtifactStorage:
    """
    S3-compatible object storage for job artifacts.

    Keys are deterministic (``<prefix>/jobs/<job_id>/<file>``) so an activity replay
    overwrites the previous upload instead of leaving duplicates behind.
    """

    def __init__(
        self,
        *,
        bucket: Optional[str],
        endpoint: Optional[str],
        access_key: Optional[str],
        secret_key: Optional[str],
        region: str = "us-east-1",
        prefix: str = "",
        public_base_url: Optional[str] = None,
        use_ssl: bool = True,
        force_path_style: bool = True,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise InfrastructureError("storage", "ARTIFACT_STORAGE_BUCKET is required")
        if client is None:
            if not endpoint:
                raise InfrastructureError("storage", "ARTIFACT_STORAGE_ENDPOINT is required")
            if not access_key or not secret_key:
                raise InfrastructureError(
                    "storage", "ARTIFACT_STORAGE_ACCESS_KEY and ARTIFACT_STORAGE_SECRET_KEY are required"
                )
            addressing_style = "path" if force_path_style else "auto"
            session = boto3.session.Session()
            client = session.client(
                "s3",
                endpoint_url=endpoint,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region or "us-east-1",
                use_ssl=bool(use_ssl),
                config=Config(
                    s3={"addressing_style": addressing_style},
                    signature_version="s3v4",
                ),
            )
        self.client = client
        self.bucket = bucket
        self.prefix = (prefix or "").strip("/")
        self.public_base_url = (public_base_url or "").rstrip("/") or None

    def build_key(self, path: str) -> str:
        parts = [p for p in [self.prefix, path.lstrip("/")] if p]
        return "/".join(parts)

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> ArtifactLocation:
        key = self.build_key(path)
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            code = exc.response.get("Error", {}).get("Code") if isinstance(exc, ClientError) else None
            if code in ("NoSuchBucket", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"):
                raise InfrastructureError("storage", f"{code}: {exc}") from exc
            raise
        logger.info(
            "artifact_storage.put",
            extra={"bucket": self.bucket, "key": key, "size_bytes": len(data)},
        )
        url = f"{self.public_base_url}/{key}" if self.public_base_url else None
        return ArtifactLocation(path=path, url=url)

    def get(self, path: str) -> bytes:
        obj = self.client.get_object(Bucket=self.bucket, Key=self.build_key(path))
        body = obj.get("Body")
        return body.read() if body else b""


class LocalArtifactStorage:
    """Filesystem-backed artifact store used for local runs and tests."""

    def __init__(self, root: str | Path, *, public_base_url: Optional[str] = None) -> None:
        self.root = Path(root)
        self.public_base_url = (public_base_url or "").rstrip("/") or None

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        root = self.root.resolve()
        if root != target and root not in target.parents:
            raise ValueError(f"Artifact path escapes storage root: {path}")
        return target

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> ArtifactLocation:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        url = f"{self.public_base_url}/{path.lstrip('/')}" if self.public_base_url else None
        return ArtifactLocation(path=path, url=url)

    def get(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()


def build_artifact_storage(settings: Any) -> ArtifactStore:
    backend = (settings.ARTIFACT_STORAGE_BACKEND or "local").strip().lower()
    if backend == "local":
        return LocalArtifactStorage(
            settings.ARTIFACT_LOCAL_DIR,
            public_base_url=settings.ARTIFACT_STORAGE_PUBLIC_BASE_URL,
        )
    if backend == "s3":
        return ArtifactStorage(
            bucket=settings.ARTIFACT_STORAGE_BUCKET,
            endpoint=settings.ARTIFACT_STORAGE_ENDPOINT,
            access_key=settings.ARTIFACT_STORAGE_ACCESS_KEY,
            secret_key=settings.ARTIFACT_STORAGE_SECRET_KEY,
            region=settings.ARTIFACT_STORAGE_REGION,
            prefix=settings.ARTIFACT_STORAGE_PREFIX,
            public_base_url=settings.ARTIFACT_STORAGE_PUBLIC_BASE_URL,
            use_ssl=settings.ARTIFACT_STORAGE_USE_SSL,
            force_path_style=settings.ARTIFACT_STORAGE_FORCE_PATH_STYLE,
        )
    raise InfrastructureError("storage", f"Unknown ARTIFACT_STORAGE_BACKEND: {backend!r}")
