"""
Narration audio storage.

The reference returned by save() is what a pin records as its audioFile:
the bare file name for the local backend, the object key for S3.
"""
import logging
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from voicepins.settings import Settings

logger = logging.getLogger(__name__)


class LocalAudioStore:
    def __init__(self, directory: str):
        self.directory = Path(directory)

    def save(self, name: str, data: bytes, content_type: str = "audio/mpeg") -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        (self.directory / name).write_bytes(data)
        return name


class S3AudioStore:
    def __init__(self, bucket: str, region: Optional[str], prefix: str = "audio/", client=None):
        self.bucket = bucket
        self.prefix = prefix
        if client is None:
            # Force v4 signing + regional endpoint to avoid redirects/CORS issues
            cfg = Config(signature_version="s3v4", region_name=region)
            client = boto3.client(
                "s3",
                region_name=region,
                endpoint_url=f"https://s3.{region}.amazonaws.com" if region else None,
                config=cfg,
            )
        self.s3 = client

    def save(self, name: str, data: bytes, content_type: str = "audio/mpeg") -> str:
        key = f"{self.prefix}{name}"
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            msg = e.response.get("Error", {}).get("Message")
            raise RuntimeError(f"S3 upload error: {code} {msg}") from e
        return key


def make_audio_store(settings: Settings):
    if settings.AUDIO_BACKEND.lower() == "s3":
        if not settings.S3_BUCKET:
            raise RuntimeError("AUDIO_BACKEND=s3 requires S3_BUCKET")
        logger.info("Storing narration audio in s3://%s/%s", settings.S3_BUCKET, settings.S3_AUDIO_PREFIX)
        return S3AudioStore(settings.S3_BUCKET, settings.AWS_REGION, settings.S3_AUDIO_PREFIX)
    return LocalAudioStore(settings.AUDIO_DIR)
