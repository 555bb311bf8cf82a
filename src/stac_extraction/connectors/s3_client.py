"""S3 connector for reading catalog documents addressed as ``s3://bucket/key``."""

import os
from typing import Any
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from dagster import ConfigurableResource, get_dagster_logger

from stac_extraction.connectors.settings import SettingsResource
from stac_extraction.errors import FetchError

logger = get_dagster_logger(__name__)


def split_s3_url(url: str) -> tuple[str, str]:
    """Split an ``s3://`` URL into bucket and key.

    :param url: S3 URL
    :returns: Tuple of (bucket, key)
    :raises FetchError: If the URL has no bucket or key
    """
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise FetchError(f"Not a valid S3 object URL: {url}") from e
    bucket, key = parsed.netloc, parsed.path.lstrip("/")
    if parsed.scheme != "s3" or not bucket or not key:
        raise FetchError(f"Not a valid S3 object URL: {url}")
    return bucket, key


class S3Resource(ConfigurableResource[Any]):
    """S3 resource creating boto3 clients from settings."""

    settings: SettingsResource

    def create_client(self, timeout: float | None = None) -> Any:
        """Create S3 client.

        Credentials come from the standard AWS variables, falling back to MinIO ones.

        :param timeout: Optional connect/read timeout in seconds
        :returns: Configured S3 client
        """
        aws_access_key_id = os.environ.get("AWS_ACCESS_KEY_ID") or os.environ.get("MINIO_ROOT_USER")
        aws_secret_access_key = os.environ.get("AWS_SECRET_ACCESS_KEY") or os.environ.get("MINIO_ROOT_PASSWORD")
        config = Config(connect_timeout=timeout, read_timeout=timeout) if timeout else None

        return boto3.client(
            "s3",
            endpoint_url=self.settings.aws_s3_endpoint,
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=self.settings.aws_region,
            use_ssl=self.settings.aws_s3_use_ssl,
            config=config,
        )

    def read_object(self, url: str, timeout: float | None = None) -> bytes:
        """Read a whole S3 object.

        :param url: ``s3://bucket/key`` URL
        :param timeout: Optional timeout in seconds
        :returns: Object content
        :raises FetchError: If the object cannot be read
        """
        bucket, key = split_s3_url(url)
        try:
            s3_client = self.create_client(timeout=timeout)
            response = s3_client.get_object(Bucket=bucket, Key=key)
            content: bytes = response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            raise FetchError(f"S3 error {code} reading {url}") from e
        except (BotoCoreError, ValueError) as e:
            raise FetchError(f"Error reading {url}: {e}") from e
        logger.debug(f"Read {len(content)} bytes from s3://{bucket}/{key}")
        return content
