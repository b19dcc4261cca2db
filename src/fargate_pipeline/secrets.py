"""Secret lookups by reference (name or ARN) in AWS Secrets Manager."""
import json
import logging
from typing import Any, Optional

from botocore.exceptions import ClientError

from fargate_pipeline.exceptions import SecretNotFound
from fargate_pipeline.provider import classify_client_error

logger = logging.getLogger(__name__)


class SecretsManagerStore:
    """Resolves secret references; values are never logged or persisted."""

    def __init__(self, secrets_client: Any = None):
        if secrets_client is None:
            from fargate_pipeline.aws.clients import get_secretsmanager_client
            secrets_client = get_secretsmanager_client()
        self.client = secrets_client

    def get(self, reference: str, key: Optional[str] = None) -> str:
        """Return the secret string, or one field of a JSON secret when ``key`` is given."""
        try:
            response = self.client.get_secret_value(SecretId=reference)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ResourceNotFoundException':
                raise SecretNotFound(reference) from e
            raise classify_client_error(e) from e

        value = response.get('SecretString')
        if value is None:
            raise SecretNotFound(reference)
        logger.debug(f"Resolved secret {reference}")

        if key is None:
            return value
        try:
            return str(json.loads(value)[key])
        except (ValueError, KeyError, TypeError) as e:
            raise SecretNotFound(f"{reference}:{key}") from e
