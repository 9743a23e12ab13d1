import logging
from functools import lru_cache

import boto3
from photobooth.core.config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_s3_client():
    # Local: uses access key from .env
    # Production (EC2): uses IAM role attached to instance
    if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
        return boto3.client(
            "s3",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        )
    return boto3.client(
        "s3",
        region_name=settings.AWS_REGION,
    )


def public_url(key: str) -> str:
    # Standard S3 URL (works if object is public OR you serve via CloudFront)
    return f"https://{settings.AWS_S3_BUCKET}.s3.{settings.AWS_REGION}.amazonaws.com/{key}"


def upload_fileobj_to_s3(fileobj, key: str, content_type: str, client=None) -> str:
    """
    Uploads a file-like object to S3 and returns an HTTPS URL.
    """
    try:
        (client or get_s3_client()).upload_fileobj(
            Fileobj=fileobj,
            Bucket=settings.AWS_S3_BUCKET,
            Key=key,
            ExtraArgs={
                "ContentType": content_type,
            },
        )
        return public_url(key)
    except Exception as e:
        logger.error("S3 upload error for %s: %s", key, e)
        raise
