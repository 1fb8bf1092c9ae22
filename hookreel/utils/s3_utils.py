import logging
from pathlib import Path
from typing import List, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from hookreel.config import settings
from hookreel.errors import PersistenceError

logger = logging.getLogger(__name__)


class S3Manager:
    def __init__(self, client=None, bucket_name: Optional[str] = None):
        self.bucket_name = bucket_name or settings.AWS_BUCKET_NAME
        self.region = settings.AWS_REGION

        # Config for large renders: multipart upload chunks
        self.transfer_config = TransferConfig(
            multipart_threshold=1024 * 1024 * 25,  # 25MB threshold
            max_concurrency=10,
            multipart_chunksize=1024 * 1024 * 25,
            use_threads=True
        )

        if client is not None:
            self.s3 = client
        elif settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            self.s3 = boto3.client(
                's3',
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                region_name=self.region
            )
            logger.info(f"S3 Manager Initialized (Bucket: {self.bucket_name})")
        else:
            self.s3 = None
            logger.warning("AWS Credentials missing. S3 features disabled.")

    @property
    def enabled(self) -> bool:
        return self.s3 is not None

    def public_url(self, s3_key: str) -> str:
        if settings.S3_PUBLIC_BASE_URL:
            return f"{settings.S3_PUBLIC_BASE_URL.rstrip('/')}/{s3_key}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{s3_key}"

    def upload_file(self, local_path: Path, s3_key: str, content_type: Optional[str] = None) -> str:
        """Uploads a single file and returns its public URL. Raises PersistenceError on failure."""
        if not self.enabled:
            raise PersistenceError("S3 is not configured, cannot upload files")

        extra_args = {"ContentType": content_type} if content_type else None
        try:
            logger.info(f"Uploading {local_path.name} to S3 ({s3_key})...")
            self.s3.upload_file(
                str(local_path),
                self.bucket_name,
                s3_key,
                ExtraArgs=extra_args,
                Config=self.transfer_config
            )
        except (BotoCoreError, ClientError, OSError) as e:
            logger.error(f"Upload failed for {local_path}: {e}")
            raise PersistenceError(f"Failed to upload {local_path.name}: {e}") from e
        return self.public_url(s3_key)

    def list_objects(self, prefix: str) -> List[str]:
        """All object keys under `prefix` (paginated)."""
        if not self.enabled:
            return []

        keys = []
        paginator = self.s3.get_paginator('list_objects_v2')
        try:
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    keys.append(obj['Key'])
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to list objects under {prefix}: {e}")
            raise PersistenceError(f"Could not list {prefix}: {e}") from e
        return keys

