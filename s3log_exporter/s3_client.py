"""
S3 storage client interface.
"""

import enum
from typing import Dict, Iterator, List, NamedTuple, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .models import EndpointConfig, UNKNOWN_OWNER


class StorageError(Exception):
    """A storage request failed."""

    def __init__(self, operation: str, bucket: str = "", code: str = "",
                 message: str = "", status: Optional[int] = None):
        self.operation = operation
        self.bucket = bucket
        self.code = code
        self.status = status
        self.message = message
        target = f" on {bucket}" if bucket else ""
        super().__init__(f"{operation}{target} failed: [{code or 'error'}] {message}")

    @property
    def access_denied(self) -> bool:
        return self.code == "AccessDenied" or self.status == 403

    @property
    def no_such_bucket(self) -> bool:
        return self.code == "NoSuchBucket" or self.status == 404


def _from_client_error(operation: str, bucket: str, err: ClientError) -> StorageError:
    error = err.response.get('Error', {})
    status = err.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
    return StorageError(operation, bucket, error.get('Code', ''),
                        error.get('Message', '') or str(err), status)


class HeadStatus(enum.Enum):
    OK = "ok"
    FORBIDDEN = "forbidden"
    ERROR = "error"


class ObjectPage(NamedTuple):
    keys: List[str]
    next_token: Optional[str] = None


class StorageClient:
    """Interface to one S3-compatible storage endpoint."""

    def __init__(self, endpoint: EndpointConfig, connect_timeout: int = 10,
                 read_timeout: int = 60, max_retries: int = 3, client=None):
        self.endpoint = endpoint
        self.region = endpoint.region
        self.client = client or boto3.client(
            "s3",
            region_name=endpoint.region,
            endpoint_url=endpoint.endpoint_url,
            aws_access_key_id=endpoint.access_key,
            aws_secret_access_key=endpoint.secret_key,
            config=Config(
                signature_version="s3v4",
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={'max_attempts': max_retries, 'mode': 'standard'},
            ),
        )

    def list_buckets(self) -> List[str]:
        """Get all bucket names visible to the credentials."""
        try:
            result = self.client.list_buckets()
        except ClientError as e:
            raise _from_client_error("ListBuckets", "", e) from e
        except BotoCoreError as e:
            raise StorageError("ListBuckets", message=str(e)) from e

        return [b['Name'] for b in result.get('Buckets', []) if b.get('Name')]

    def head_bucket(self, bucket: str) -> HeadStatus:
        """
        Accessibility pre-check.

        403 means the bucket lives on another endpoint or is not ours to
        read; any other failure is reported as ERROR.
        """
        try:
            self.client.head_bucket(Bucket=bucket)
            return HeadStatus.OK
        except ClientError as e:
            err = _from_client_error("HeadBucket", bucket, e)
            if err.status == 403 or err.code in ("403", "Forbidden", "AccessDenied"):
                return HeadStatus.FORBIDDEN
            return HeadStatus.ERROR
        except BotoCoreError:
            return HeadStatus.ERROR

    def list_objects(self, bucket: str, prefix: str, page_token: Optional[str] = None,
                     page_size: int = 1000) -> ObjectPage:
        """List one page of object keys under prefix."""
        kwargs = {'Bucket': bucket, 'Prefix': prefix, 'MaxKeys': page_size}
        if page_token:
            kwargs['ContinuationToken'] = page_token

        try:
            result = self.client.list_objects_v2(**kwargs)
        except ClientError as e:
            raise _from_client_error("ListObjectsV2", bucket, e) from e
        except BotoCoreError as e:
            raise StorageError("ListObjectsV2", bucket, message=str(e)) from e

        keys = [obj['Key'] for obj in result.get('Contents', [])]
        next_token = result.get('NextContinuationToken') if result.get('IsTruncated') else None
        return ObjectPage(keys, next_token)

    def get_object(self, bucket: str, key: str) -> Iterator[bytes]:
        """
        Stream an object line by line.

        The request is issued on the first next(); the body is closed when
        the iterator is exhausted or closed.
        """
        try:
            result = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise _from_client_error("GetObject", bucket, e) from e
        except BotoCoreError as e:
            raise StorageError("GetObject", bucket, message=str(e)) from e

        body = result['Body']
        try:
            yield from body.iter_lines()
        except (BotoCoreError, OSError) as e:
            raise StorageError("GetObject", bucket, message=f"reading {key}: {e}") from e
        finally:
            body.close()

    def get_bucket_owner(self, bucket: str) -> str:
        """Display name of the bucket ACL owner."""
        try:
            result = self.client.get_bucket_acl(Bucket=bucket)
        except ClientError as e:
            raise _from_client_error("GetBucketAcl", bucket, e) from e
        except BotoCoreError as e:
            raise StorageError("GetBucketAcl", bucket, message=str(e)) from e

        owner = result.get('Owner') or {}
        return owner.get('DisplayName') or UNKNOWN_OWNER

    def get_bucket_tagging(self, bucket: str) -> Dict[str, str]:
        """Bucket tags; empty when the bucket has no tag set."""
        try:
            result = self.client.get_bucket_tagging(Bucket=bucket)
        except ClientError as e:
            err = _from_client_error("GetBucketTagging", bucket, e)
            if err.code == "NoSuchTagSet":
                return {}
            raise err from e
        except BotoCoreError as e:
            raise StorageError("GetBucketTagging", bucket, message=str(e)) from e

        return {t['Key']: t['Value'] for t in result.get('TagSet', [])}


def create_client(endpoint: EndpointConfig, connect_timeout: int = 10,
                  read_timeout: int = 60, max_retries: int = 3) -> StorageClient:
    """Default client factory used by the discoverer."""
    return StorageClient(endpoint, connect_timeout=connect_timeout,
                         read_timeout=read_timeout, max_retries=max_retries)
