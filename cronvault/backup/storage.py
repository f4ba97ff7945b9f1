"""
S3-compatible storage handler.

Used for both ends of the pipeline:
- the object store source (paginated listing, fetchable URLs)
- the durable backup store (upload, list, delete)
"""

from typing import Any, BinaryIO, Dict, List, Optional
from urllib.parse import quote

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError


# Bodies above this size go up as a multipart upload in 10MB parts
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for a single S3 bucket.

    Each bucket gets its own credentials, so the source store and the
    backup store can be scoped independently.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None,
        public_base_url: Optional[str] = None,
        transfer_config: Optional[TransferConfig] = None
    ):
        """
        Initialize S3 storage handler.

        Args:
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket name
            region: Region (default: us-east-1)
            endpoint_url: Custom endpoint for S3-compatible services
            public_base_url: Base URL objects are publicly served from, if any
            transfer_config: Multipart settings for uploads (default: 100MB threshold)
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url.rstrip('/') if public_base_url else None
        self.transfer_config = transfer_config or TransferConfig(
            multipart_threshold=MULTIPART_THRESHOLD,
            multipart_chunksize=MULTIPART_CHUNK_SIZE
        )

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def upload(
        self,
        key: str,
        body: BinaryIO,
        content_type: str = 'application/octet-stream',
        public: bool = False
    ) -> str:
        """
        Upload a file-like object under the given key.

        An existing object with the same key is overwritten. Bodies above
        the multipart threshold are sent in parts; a failed multipart upload
        is aborted by the transfer manager.

        Args:
            key: Object key
            body: Readable binary stream, positioned at the start
            content_type: Content-Type stored with the object
            public: Grant public-read access

        Returns:
            URL of the uploaded object

        Raises:
            StorageError: If upload fails
        """
        extra_args = {'ContentType': content_type}
        if public:
            extra_args['ACL'] = 'public-read'

        try:
            self.s3_client.upload_fileobj(
                body,
                self.bucket_name,
                key,
                ExtraArgs=extra_args,
                Config=self.transfer_config
            )
            return self.object_url(key)

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}")
        except (S3UploadFailedError, BotoCoreError) as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")

    def delete(self, key: str):
        """
        Delete an object.

        Args:
            key: Object key to delete

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_error_code(e)}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_page(
        self,
        prefix: str = '',
        cursor: Optional[str] = None,
        limit: int = 100
    ) -> Dict[str, Any]:
        """
        List one page of objects.

        Args:
            prefix: Key prefix to filter by
            cursor: Continuation token from the previous page, None for the first
            limit: Maximum number of keys in the page

        Returns:
            Dict with 'objects' (list of dicts with 'Key', 'Size',
            'LastModified') and 'cursor' (next token, or None on the last page)

        Raises:
            StorageError: If listing fails
        """
        params = {
            'Bucket': self.bucket_name,
            'Prefix': prefix,
            'MaxKeys': limit
        }
        if cursor:
            params['ContinuationToken'] = cursor

        try:
            page = self.s3_client.list_objects_v2(**params)
        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

        objects = [
            {
                'Key': obj['Key'],
                'Size': obj['Size'],
                'LastModified': obj['LastModified']
            }
            for obj in page.get('Contents', [])
        ]

        next_cursor = page.get('NextContinuationToken') if page.get('IsTruncated') else None
        return {'objects': objects, 'cursor': next_cursor}

    def list_objects(self, prefix: str = '') -> List[Dict[str, Any]]:
        """
        List every object with the given prefix.

        Args:
            prefix: Key prefix to filter by

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
        except Exception as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def object_url(self, key: str) -> str:
        """
        Public (unsigned) URL of an object.

        Args:
            key: Object key

        Returns:
            URL string
        """
        quoted_key = quote(key)

        if self.public_base_url:
            return f"{self.public_base_url}/{quoted_key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{quoted_key}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{quoted_key}"

    def download_url(self, key: str, expires_in: int = 3600) -> str:
        """
        URL an object can be fetched from with a plain GET.

        Uses the public base URL when one is configured, otherwise a
        presigned URL.

        Args:
            key: Object key
            expires_in: Lifetime of a presigned URL in seconds

        Returns:
            URL string

        Raises:
            StorageError: If the URL cannot be generated
        """
        if self.public_base_url:
            return self.object_url(key)

        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': key},
                ExpiresIn=expires_in
            )
        except Exception as e:
            raise StorageError(f"Failed to presign URL for {key}: {e}")
