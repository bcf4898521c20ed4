"""
Almacén de documentos sobre DynamoDB.

Cada base de datos es una tabla; dentro de ella, cada colección es una
partición (clave collectionId) y cada documento un item con clave de
ordenación documentId.
"""
import logging
import uuid

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

PARTITION_KEY = "collectionId"
SORT_KEY = "documentId"


class DocumentStoreError(Exception):
    """Fallo al escribir en el almacén (item inválido, permisos, conectividad)."""
    pass


def unique_id() -> str:
    return uuid.uuid4().hex


class DynamoDocumentStore:
    def __init__(self, region_name=None, endpoint_url=None):
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self._dynamodb = None

    def _resource(self):
        # Inicialización perezosa: el cliente se crea en la primera escritura
        if self._dynamodb is None:
            self._dynamodb = boto3.resource(
                "dynamodb",
                region_name=self.region_name,
                endpoint_url=self.endpoint_url,
            )
        return self._dynamodb

    def create(self, database_id: str, collection_id: str, document_id: str, record: dict) -> dict:
        """
        Crea un documento nuevo y devuelve lo guardado con su id.

        La escritura es condicional: nunca sobrescribe un documento existente.

        Raises:
            DocumentStoreError: si DynamoDB rechaza el item o no responde
        """
        item = dict(record)
        item[PARTITION_KEY] = collection_id
        item[SORT_KEY] = document_id

        try:
            table = self._resource().Table(database_id)
            table.put_item(
                Item=item,
                ConditionExpression="attribute_not_exists(#doc)",
                ExpressionAttributeNames={"#doc": SORT_KEY},
            )
        except ClientError as e:
            error = e.response.get("Error", {})
            raise DocumentStoreError(
                f"{error.get('Code', 'ClientError')}: {error.get('Message', str(e))}"
            ) from e
        except (BotoCoreError, TypeError) as e:
            # TypeError: boto3 no serializa floats ni tipos no JSON
            raise DocumentStoreError(str(e)) from e

        logger.debug(f"Documento {document_id} guardado en {database_id}/{collection_id}")

        document = dict(item)
        document["id"] = document_id
        document["databaseId"] = database_id
        return document
