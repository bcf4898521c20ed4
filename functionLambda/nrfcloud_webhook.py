"""
Lambda que recibe los webhooks del Message Routing Service de nRF Cloud
y guarda cada mensaje de dispositivo como documento en DynamoDB.

Se publica detrás de API Gateway (REST o HTTP API) o de una function URL.
  GET   -> health check
  POST  -> procesa un mensaje o un lote {"messages": [...]}
  otros -> 405
"""
import base64
import hmac
import json
import logging
from datetime import datetime, timezone

from document_store import DynamoDocumentStore, unique_id
from telemetry_normalizer import format_timestamp, normalize_message, to_json
from webhook_config import WebhookConfig

logger = logging.getLogger(__name__)

# Longitud máxima del payload que se escribe en el log
PAYLOAD_LOG_LIMIT = 500

SIGNATURE_HEADERS = ("x-nrfcloud-signature", "authorization")


class PayloadError(ValueError):
    """El cuerpo del webhook no tiene la forma esperada."""
    pass


def _response(status_code: int, body: dict) -> dict:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


# ==========================================
# Firma
# ==========================================

def verify_signature(signature, secret: str) -> bool:
    """Acepta el secreto tal cual o como 'Bearer <secreto>'."""
    if not signature:
        return False
    if signature.startswith("Bearer "):
        signature = signature[len("Bearer "):]
    return hmac.compare_digest(signature.encode("utf-8"), secret.encode("utf-8"))


def _request_signature(headers: dict):
    for name in SIGNATURE_HEADERS:
        if headers.get(name):
            return headers[name]
    return None


# ==========================================
# Payload
# ==========================================

def parse_payload(body):
    """El cuerpo llega como texto JSON o ya parseado."""
    if body is None or body == "":
        raise PayloadError("Request body is empty")
    if isinstance(body, (str, bytes)):
        return json.loads(body)
    return body


def extract_messages(payload) -> list:
    """Un lote {"messages": [...]} o un único envelope -> siempre una lista."""
    if not isinstance(payload, dict):
        raise PayloadError("Webhook payload must be a JSON object")

    messages = payload.get("messages")
    if messages is None:
        return [payload]
    if not isinstance(messages, list):
        raise PayloadError("'messages' must be an array")
    return messages


# ==========================================
# Procesamiento
# ==========================================

def process_message(envelope, config: WebhookConfig, store) -> dict:
    """Normaliza un envelope y crea su documento. Devuelve el documento creado."""
    record = normalize_message(envelope)
    logger.info(f"Creating document for device {record['deviceId']}, appId: {record['appId']}")
    return store.create(config.database_id, config.collection_id, unique_id(), record)


def process_messages(messages: list, config: WebhookConfig, store) -> list:
    """
    Procesa los mensajes en orden, uno detrás de otro.

    Un fallo en un mensaje queda registrado en su resultado y no detiene
    el resto del lote.
    """
    results = []
    for envelope in messages:
        device_id = envelope.get("deviceId") if isinstance(envelope, dict) else None
        try:
            document = process_message(envelope, config, store)
            results.append({"deviceId": device_id, "documentId": document["id"], "success": True})
        except Exception as e:
            logger.error(f"Failed to process message for device {device_id}: {e}")
            results.append({"deviceId": device_id, "success": False, "error": str(e)})
    return results


def handle_request(method: str, headers: dict, body, config: WebhookConfig, store) -> dict:
    """
    Atiende una petición HTTP del webhook.

    Args:
        method: método HTTP
        headers: cabeceras con los nombres en minúsculas
        body: cuerpo en texto o ya parseado
        config: configuración leída en el cold start
        store: almacén con la operación create(database_id, collection_id, id, record)

    Returns:
        Respuesta en formato proxy de API Gateway
    """
    headers = headers or {}

    missing = config.missing_required()
    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        return _response(500, {"success": False, "error": "Server configuration error"})

    method = (method or "").upper()

    if method == "GET":
        return _response(200, {
            "status": "ok",
            "message": "nRF Cloud webhook endpoint is active",
            "timestamp": format_timestamp(datetime.now(timezone.utc)),
        })

    if method != "POST":
        return _response(405, {"success": False, "error": "Method not allowed"})

    if config.webhook_secret and not verify_signature(_request_signature(headers), config.webhook_secret):
        logger.error("Invalid webhook signature")
        return _response(401, {"success": False, "error": "Invalid signature"})

    try:
        payload = parse_payload(body)
        logger.info(f"Received webhook payload: {to_json(payload)[:PAYLOAD_LOG_LIMIT]}...")

        messages = extract_messages(payload)
        results = process_messages(messages, config, store)

        success_count = sum(1 for r in results if r["success"])
        logger.info(f"Processed {success_count}/{len(results)} messages successfully")

        return _response(200, {
            "success": True,
            "processed": len(results),
            "successful": success_count,
            "results": results,
        })

    except Exception as e:
        logger.exception(f"Webhook processing error: {e}")
        return _response(500, {"success": False, "error": "Failed to process webhook", "details": str(e)})


# ==========================================
# Lambda
# ==========================================

CONFIG = WebhookConfig.from_env()
logging.getLogger().setLevel(CONFIG.log_level)

if not CONFIG.webhook_secret:
    logger.warning("NRFCLOUD_WEBHOOK_SECRET is not set, webhook signatures are not checked")

dynamo_store = DynamoDocumentStore(region_name=CONFIG.aws_region, endpoint_url=CONFIG.dynamodb_endpoint_url)


def _event_method(event: dict) -> str:
    # REST API (v1) usa httpMethod; HTTP API (v2) y function URL, requestContext.http
    if event.get("httpMethod"):
        return event["httpMethod"]
    return (event.get("requestContext") or {}).get("http", {}).get("method", "")


def _event_body(event: dict):
    body = event.get("body")
    if body and event.get("isBase64Encoded"):
        try:
            body = base64.b64decode(body, validate=True).decode("utf-8")
        except ValueError as e:
            # Se deja el cuerpo tal cual; el parseo JSON fallará con 500
            logger.error(f"Could not decode base64 body: {e}")
    return body


def lambda_handler(event, context):
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    return handle_request(_event_method(event), headers, _event_body(event), CONFIG, dynamo_store)
