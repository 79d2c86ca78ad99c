"""S3 storage for event images."""
import logging
from typing import Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class ImageStorage:
    """Uploads event images to the public image bucket."""

    def __init__(self, bucket_name: str, public_base_url: Optional[str] = None):
        """
        Initialize the S3 client.

        Args:
            bucket_name: Name of the S3 bucket
            public_base_url: URL prefix for public links, defaults to the
                bucket's virtual-hosted S3 endpoint
        """
        self.bucket_name = bucket_name
        self.s3 = boto3.client('s3')
        self.public_base_url = public_base_url.rstrip('/') if public_base_url else None
        logger.info(f"Initialized ImageStorage for bucket: {bucket_name}")

    def upload(self, name: str, payload: bytes, content_type: str = 'image/jpeg') -> str:
        """
        Store an image and return its public URL.

        Args:
            name: Sanitized object key
            payload: Image bytes
            content_type: MIME type stored with the object

        Returns:
            Public URL of the stored image
        """
        try:
            self.s3.put_object(
                Bucket=self.bucket_name,
                Key=name,
                Body=payload,
                ContentType=content_type
            )
        except ClientError as e:
            logger.error(f"Error uploading image {name}: {e}")
            raise

        url = self.public_url(name)
        logger.info(f"Uploaded image {name} ({len(payload)} bytes)")
        return url

    def public_url(self, name: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{name}"
        region = self.s3.meta.region_name or 'us-east-1'
        return f"https://{self.bucket_name}.s3.{region}.amazonaws.com/{name}"
