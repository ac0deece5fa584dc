from typing import Optional

import boto3
from botocore.config import Config


class ObjectStorage:
    """Issues time-limited GET links for encrypted book blobs (S3 or R2)."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region: str = "auto",
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        expires_in: int = 300,
        client=None,
    ):
        self.bucket = bucket
        self.expires_in = expires_in
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(signature_version="s3v4"),
        )

    def presign(self, file_key: str) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": file_key},
            ExpiresIn=self.expires_in,
        )
