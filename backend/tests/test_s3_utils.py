"""
Unit tests for the S3 blob store, with the boto3 client mocked.
"""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from speechtasks.exceptions import StorageFailure
from speechtasks.s3_utils import MAX_DELETE_KEYS, BlobStore, parse_storage_url


def _client_error(code):
    return ClientError({'Error': {'Code': code, 'Message': code}}, 'Operation')


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def blob_store(client):
    return BlobStore(client=client, region='eu-west-1')


class TestParseStorageUrl:

    def test_virtual_hosted(self):
        assert parse_storage_url('https://media.s3.amazonaws.com/projects/p1/a.wav') == ('media', 'projects/p1/a.wav')

    def test_regional_and_quoted(self):
        assert parse_storage_url('https://media.s3.eu-west-1.amazonaws.com/projects/p%201/a.wav') == (
            'media', 'projects/p 1/a.wav'
        )

    def test_presigned_query_is_ignored(self):
        assert parse_storage_url('https://media.s3.amazonaws.com/a.wav?X-Amz-Signature=abc') == ('media', 'a.wav')

    def test_s3_uri(self):
        assert parse_storage_url('s3://media/a.wav') == ('media', 'a.wav')

    def test_not_s3(self):
        assert parse_storage_url('https://example.com/a.wav') is None
        assert parse_storage_url(None) is None


class TestBlobStore:
    """Tests for BlobStore."""

    def test_upload(self, blob_store, client):
        blob_store.upload('media', 'a.wav', b'data', 'audio/wav')

        client.put_object.assert_called_once_with(
            Bucket='media', Key='a.wav', Body=b'data', ContentType='audio/wav'
        )

    def test_upload_error(self, blob_store, client):
        client.put_object.side_effect = _client_error('AccessDenied')
        with pytest.raises(StorageFailure):
            blob_store.upload('media', 'a.wav', b'data')

    def test_public_url_round_trips_through_parser(self, blob_store):
        url = blob_store.get_public_url('media', 'projects/p 1/a.wav')

        assert url == 'https://media.s3.eu-west-1.amazonaws.com/projects/p%201/a.wav'
        assert parse_storage_url(url) == ('media', 'projects/p 1/a.wav')
        assert blob_store.get_public_url('', 'a.wav') is None

    def test_presigned_url(self, blob_store, client):
        client.generate_presigned_url.return_value = 'https://signed'

        assert blob_store.generate_presigned_url('media', 'a.wav', 60) == 'https://signed'
        client.generate_presigned_url.assert_called_once_with(
            'get_object', Params={'Bucket': 'media', 'Key': 'a.wav'}, ExpiresIn=60
        )

    def test_presigned_url_error(self, blob_store, client):
        client.generate_presigned_url.side_effect = _client_error('AccessDenied')
        assert blob_store.generate_presigned_url('media', 'a.wav') is None

    def test_list(self, blob_store, client):
        client.get_paginator.return_value.paginate.return_value = [
            {'Contents': [{'Key': 'a'}, {'Key': 'b'}]},
            {},
        ]
        assert blob_store.list('media', 'projects/') == ['a', 'b']

    def test_remove_in_batches(self, blob_store, client):
        client.delete_objects.side_effect = lambda Bucket, Delete: {'Deleted': Delete['Objects']}
        paths = [f"k{i}" for i in range(MAX_DELETE_KEYS + 5)]

        assert blob_store.remove('media', paths) == len(paths)
        assert client.delete_objects.call_count == 2

    def test_remove_nothing(self, blob_store, client):
        assert blob_store.remove('media', []) == 0
        client.delete_objects.assert_not_called()

    def test_remove_partial_failure(self, blob_store, client):
        client.delete_objects.return_value = {'Errors': [{'Key': 'a', 'Code': 'AccessDenied'}]}
        with pytest.raises(StorageFailure):
            blob_store.remove('media', ['a'])
