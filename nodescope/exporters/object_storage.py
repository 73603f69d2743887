# nodescope/exporters/object_storage.py - Object storage exporter
"""
Uploads collector outputs to S3-compatible object storage.

Every item lands at <run-timestamp>/<node-name>/<item-name>, with the
colons of the timestamp replaced by dashes. Uploads are fail-fast: the
first failing item aborts the rest of the export.
"""

import logging
from typing import BinaryIO, Callable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from nodescope.collector.base import DataProducer
from nodescope.errors import ExportError, StorageNotConfiguredError
from nodescope.utils.runtime_info import RuntimeInfo


BUCKET_EXISTS_CODES = ('BucketAlreadyOwnedByYou', 'BucketAlreadyExists')

# Credentials scoped to one container cannot create it
CONTAINER_KEY_TYPE = 'Container'


class ObjectStorageExporter:
    """
    Exports DataProducer outputs and standalone streams to object storage.
    """

    def __init__(self, runtime_info: RuntimeInfo, creation_time: str,
                 client_factory: Optional[Callable[[], object]] = None):
        """
        Args:
            runtime_info: Node identity and storage settings
            creation_time: Run timestamp used as the key prefix
            client_factory: Builds the S3 client, boto3 by default
        """
        self.runtime_info = runtime_info
        self.creation_time = creation_time
        self.client_factory = client_factory or self._create_client

        self._client = None
        self._bucket_ready = False
        self.logger = logging.getLogger(__name__)

    @property
    def bucket(self) -> str:
        return self.runtime_info.storage.container_name

    def _create_client(self):
        storage = self.runtime_info.storage
        return boto3.client(
            's3',
            aws_access_key_id=storage.account_name,
            aws_secret_access_key=storage.access_key,
            endpoint_url=storage.endpoint_url or None,
            region_name=storage.region or None,
        )

    def _create_bucket(self):
        storage = self.runtime_info.storage
        params = {'Bucket': self.bucket}
        if storage.region and storage.region != 'us-east-1':
            params['CreateBucketConfiguration'] = {'LocationConstraint': storage.region}

        try:
            self._client.create_bucket(**params)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') not in BUCKET_EXISTS_CODES:
                raise ExportError(f"create container with storage error: {e}") from e
        except BotoCoreError as e:
            raise ExportError(f"create container: {e}") from e

    def _container(self):
        """
        Get a client for a destination container that is known to exist.

        Raises:
            StorageNotConfiguredError: Storage settings are missing
            ExportError: The container could not be created
        """
        if not self.runtime_info.storage.configured:
            self.logger.warning("Storage account information was not provided. "
                                "Export to object storage will be skipped.")
            raise StorageNotConfiguredError()

        if self._client is None:
            self._client = self.client_factory()

        if not self._bucket_ready:
            if self.runtime_info.storage.key_type != CONTAINER_KEY_TYPE:
                self._create_bucket()
            self._bucket_ready = True

        return self._client

    def object_key(self, name: str) -> str:
        prefix = self.creation_time.replace(':', '-')
        return f"{prefix}/{self.runtime_info.host_node_name}/{name}"

    def export(self, producer: DataProducer) -> List[str]:
        """
        Upload every item of `producer`.

        Returns:
            Object keys written

        Raises:
            ExportError: Storage setup or an upload failed
        """
        client = self._container()
        written = []

        for name, data in producer.get_data().items():
            key = self.object_key(name)
            body = data.encode('utf-8')

            self.logger.info(f"Uploading {name} ({len(body)} bytes)")
            try:
                client.put_object(Bucket=self.bucket, Key=key, Body=body)
            except (ClientError, BotoCoreError) as e:
                raise ExportError(f"append file {name} to blob: {e}") from e

            written.append(key)

        return written

    def export_reader(self, name: str, stream: BinaryIO) -> str:
        """
        Upload a single named stream, e.g. a zipped archive.

        Returns:
            Object key written
        """
        client = self._container()
        key = self.object_key(name)

        self.logger.info(f"Uploading the file with blob name: {name}")
        try:
            client.upload_fileobj(stream, self.bucket, key)
        except (ClientError, BotoCoreError) as e:
            raise ExportError(f"upload {name}: {e}") from e

        return key
