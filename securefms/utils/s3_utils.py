import logging
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

from securefms.blob_store import BlobBackend
from securefms.errors import BlobStorageError

load_dotenv()

logger = logging.getLogger(__name__)

MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


def make_s3_client():
    return boto3.client(
        "s3",
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        region_name=os.getenv("AWS_REGION"),
        endpoint_url=os.getenv("S3_ENDPOINT_URL"),
    )


class S3BlobBackend(BlobBackend):
    def __init__(self, client, bucket: str, prefix: str = "blobs"):
        if not bucket:
            raise RuntimeError("S3_BUCKET_NAME environment variable is required")
        self.s3 = client
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def _key(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    def put(self, name: str, data: bytes) -> None:
        """
        Upload an encrypted blob
        """
        key = self._key(name)
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data)
        except (ClientError, BotoCoreError) as exc:
            raise BlobStorageError(f"S3 upload of {key} failed: {exc}") from exc
        logger.info("Uploaded %s to S3", key)

    def get(self, name: str) -> bytes:
        key = self._key(name)
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise BlobStorageError(f"S3 download of {key} failed: {exc}") from exc

    def delete(self, name: str) -> None:
        key = self._key(name)
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = exc.response["Error"].get("Code")
            if code not in MISSING_CODES:
                raise BlobStorageError(f"S3 delete of {key} failed: {code}") from exc
        except BotoCoreError as exc:
            raise BlobStorageError(f"S3 delete of {key} failed: {exc}") from exc
        logger.info("Deleted %s from S3", key)

    def exists(self, name: str) -> bool:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=self._key(name))
            return True
        except ClientError as exc:
            if exc.response["Error"].get("Code") in MISSING_CODES:
                return False
            raise BlobStorageError(f"S3 head of {name} failed") from exc

    def ping(self) -> None:
        try:
            self.s3.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as exc:
            raise BlobStorageError(f"S3 bucket {self.bucket} unavailable: {exc}") from exc


def s3_backend_from_env() -> S3BlobBackend:
    return S3BlobBackend(make_s3_client(), os.getenv("S3_BUCKET_NAME"))
