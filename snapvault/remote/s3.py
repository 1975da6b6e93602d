# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
SnapVault S3 Remote Store - Encrypted archives in an S3-compatible bucket.

Small archives are uploaded with a single PUT. Larger ones use multipart
upload so progress can be reported per part. A failed multipart upload is
aborted and a PUT interrupted by its progress callback is deleted, so the
bucket never keeps a blob the caller does not know about.
"""

from pathlib import Path
from typing import Any, Dict, List

import aiofiles
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from snapvault.exceptions import NetworkError, NotFoundError
from snapvault.progress import TransferCallback

logger = structlog.get_logger()

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_DOWNLOAD_CHUNK = 1024 * 1024


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in _NOT_FOUND_CODES


class S3RemoteStore:
    """RemoteStore backed by S3 (or MinIO, R2, ... via endpoint_url)."""

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        prefix: str = "snapvault/",
        endpoint_url: str | None = None,
        part_size: int = 8 * 1024 * 1024,
        session: Any = None,
    ) -> None:
        if session is None:
            from aiobotocore.session import get_session

            session = get_session()
        self.bucket = bucket
        self.region = region
        self.prefix = prefix
        self.endpoint_url = endpoint_url
        self.part_size = part_size
        self._session = session

    def _client(self):
        return self._session.create_client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    async def upload(
        self,
        path: Path,
        name: str,
        on_progress: TransferCallback | None = None,
    ) -> str:
        key = f"{self.prefix}{name}"
        total = path.stat().st_size

        async with self._client() as client:
            if total <= self.part_size:
                async with aiofiles.open(path, "rb") as f:
                    body = await f.read()
                try:
                    await client.put_object(Bucket=self.bucket, Key=key, Body=body)
                except (ClientError, BotoCoreError) as e:
                    raise NetworkError(
                        f"Upload failed: {e}",
                        details={"bucket": self.bucket, "key": key},
                    ) from e
                if on_progress is not None:
                    try:
                        await on_progress(total, total)
                    except BaseException:
                        # The key never reaches the caller
                        await self._discard_object(client, key)
                        raise
            else:
                await self._multipart_upload(client, path, key, total, on_progress)

        logger.info("remote_upload_complete", bucket=self.bucket, key=key, size=total)
        return key

    async def _multipart_upload(
        self,
        client: Any,
        path: Path,
        key: str,
        total: int,
        on_progress: TransferCallback | None,
    ) -> None:
        try:
            created = await client.create_multipart_upload(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise NetworkError(
                f"Upload failed: {e}",
                details={"bucket": self.bucket, "key": key},
            ) from e
        upload_id = created["UploadId"]

        parts: List[Dict[str, Any]] = []
        sent = 0
        try:
            async with aiofiles.open(path, "rb") as f:
                part_number = 1
                while True:
                    data = await f.read(self.part_size)
                    if not data:
                        break
                    response = await client.upload_part(
                        Bucket=self.bucket,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data,
                    )
                    parts.append({"ETag": response["ETag"], "PartNumber": part_number})
                    sent += len(data)
                    part_number += 1
                    if on_progress is not None:
                        await on_progress(sent, total)

            await client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except BaseException as e:
            await self._abort_multipart(client, key, upload_id)
            if isinstance(e, (ClientError, BotoCoreError)):
                raise NetworkError(
                    f"Upload failed: {e}",
                    details={"bucket": self.bucket, "key": key, "sent": sent},
                ) from e
            raise

    async def _abort_multipart(self, client: Any, key: str, upload_id: str) -> None:
        try:
            await client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
            logger.info("multipart_upload_aborted", bucket=self.bucket, key=key)
        except (ClientError, BotoCoreError) as e:
            # Leftover parts expire through the bucket lifecycle policy
            logger.warning(
                "multipart_abort_failed",
                bucket=self.bucket,
                key=key,
                upload_id=upload_id,
                error=str(e),
            )

    async def _discard_object(self, client: Any, key: str) -> None:
        try:
            await client.delete_object(Bucket=self.bucket, Key=key)
            logger.info("uploaded_object_discarded", bucket=self.bucket, key=key)
        except (ClientError, BotoCoreError) as e:
            logger.warning(
                "uploaded_object_discard_failed",
                bucket=self.bucket,
                key=key,
                error=str(e),
            )

    async def download(
        self,
        remote_id: str,
        destination: Path,
        on_progress: TransferCallback | None = None,
    ) -> Path:
        try:
            async with self._client() as client:
                response = await client.get_object(Bucket=self.bucket, Key=remote_id)
                total = int(response.get("ContentLength") or 0)
                received = 0
                async with response["Body"] as stream, aiofiles.open(destination, "wb") as out:
                    while True:
                        chunk = await stream.read(_DOWNLOAD_CHUNK)
                        if not chunk:
                            break
                        await out.write(chunk)
                        received += len(chunk)
                        if on_progress is not None:
                            await on_progress(received, max(total, received))
        except ClientError as e:
            if _is_not_found(e):
                raise NotFoundError(
                    "Remote backup not found",
                    details={"bucket": self.bucket, "key": remote_id},
                ) from e
            raise NetworkError(
                f"Download failed: {e}",
                details={"bucket": self.bucket, "key": remote_id},
            ) from e
        except BotoCoreError as e:
            raise NetworkError(
                f"Download failed: {e}",
                details={"bucket": self.bucket, "key": remote_id},
            ) from e

        logger.info("remote_download_complete", bucket=self.bucket, key=remote_id, size=received)
        return destination

    async def delete(self, remote_id: str) -> None:
        # DeleteObject succeeds for missing keys, so check first
        try:
            async with self._client() as client:
                await client.head_object(Bucket=self.bucket, Key=remote_id)
                await client.delete_object(Bucket=self.bucket, Key=remote_id)
        except ClientError as e:
            if _is_not_found(e):
                raise NotFoundError(
                    "Remote backup not found",
                    details={"bucket": self.bucket, "key": remote_id},
                ) from e
            raise NetworkError(
                f"Delete failed: {e}",
                details={"bucket": self.bucket, "key": remote_id},
            ) from e
        except BotoCoreError as e:
            raise NetworkError(
                f"Delete failed: {e}",
                details={"bucket": self.bucket, "key": remote_id},
            ) from e

        logger.info("remote_blob_deleted", bucket=self.bucket, key=remote_id)
