"""
OpenSearch client wrapper used as a session-keyed document store.
"""

import json
from typing import Any, Dict, Optional

import boto3
from opensearchpy import NotFoundError, OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger
from .timestamp_utils import now, to_iso

logger = get_logger(__name__)

_INDEX_BODY = {
    'mappings': {
        'properties': {
            'key': {
                'type': 'keyword'
            },
            'collection': {
                'type': 'keyword'
            },
            'session_id': {
                'type': 'keyword'
            },
            # Serialized blob, never searched
            'payload': {
                'type': 'text',
                'index': False
            },
            'updated_at': {
                'type': 'date'
            }
        }
    }
}


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
        """
        self.config = config
        self.index_name = config.index_name

        # Get AWS credentials and create auth
        credentials = boto3.Session().get_credentials()
        auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)
        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def create_index_if_not_exists(self) -> bool:
        """
        Create the session memory index if it doesn't exist.

        Returns:
            True if the index was created or already exists
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return True

            self.client.indices.create(index=self.index_name, body=_INDEX_BODY)
            logger.info(f'Created index {self.index_name}')
            return True

        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def put_document(self, key: str, collection: str, session_id: str, payload: Any) -> bool:
        """
        Store a JSON-compatible payload under a fixed document id.

        Args:
            key: Document id (collection and session id combined)
            collection: Logical collection name
            session_id: Session the payload belongs to
            payload: JSON-compatible value

        Returns:
            True if indexing was successful, False otherwise
        """
        document = {
            'key': key,
            'collection': collection,
            'session_id': session_id,
            'payload': json.dumps(payload),
            'updated_at': to_iso(now())
        }

        try:
            response = self.client.index(index=self.index_name, id=key, body=document)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Stored document {key} in {self.index_name}')
            else:
                logger.warning(f'Unexpected result storing document {key}: {response}')

            return success

        except OpenSearchException as e:
            logger.error(f'Error storing document {key}: {e}')
            raise OpenSearchError(f'Failed to store document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error storing document {key}: {e}')
            raise OpenSearchError(f'Unexpected error storing document: {e}')

    def get_document(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Get a stored payload by document id.

        Args:
            key: Document id

        Returns:
            Decoded payload if found, None otherwise
        """
        try:
            response = self.client.get(index=self.index_name, id=key)
            if not response.get('found'):
                return None
            return json.loads(response['_source']['payload'])

        except NotFoundError:
            return None
        except (OpenSearchException, KeyError, ValueError) as e:
            logger.error(f'Error getting document {key}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error getting document {key}: {e}')
            raise OpenSearchError(f'Unexpected error getting document: {e}')

    def delete_document(self, key: str) -> bool:
        """
        Delete a document from the index.

        Args:
            key: Document id

        Returns:
            True if deletion was successful, False otherwise
        """
        try:
            response = self.client.delete(index=self.index_name, id=key)

            success = response.get('result') == 'deleted'
            if success:
                logger.debug(f'Deleted document {key} from {self.index_name}')
            else:
                logger.warning(f'Document {key} not found for deletion')

            return success

        except NotFoundError:
            logger.warning(f'Document {key} not found for deletion')
            return False
        except OpenSearchException as e:
            logger.error(f'Error deleting document {key}: {e}')
            raise OpenSearchError(f'Failed to delete document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error deleting document {key}: {e}')
            raise OpenSearchError(f'Unexpected error deleting document: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
