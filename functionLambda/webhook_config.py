"""
Configuración del webhook de nRF Cloud.

Se lee una sola vez por cold start desde las variables de entorno de la
Lambda y se pasa de forma explícita al handler.
"""
import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

# Variables obligatorias: sin ellas no se puede escribir ningún documento
REQUIRED_VARS = ("DATABASE_ID", "COLLECTION_ID")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

logger = logging.getLogger(__name__)


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = (environ.get(name) or "").strip()
    return value or None


def _log_level(environ: Mapping[str, str]) -> str:
    # Un nivel desconocido no debe tumbar la Lambda en el cold start
    level = (_env(environ, "LOG_LEVEL") or "INFO").upper()
    if level not in LOG_LEVELS:
        logger.warning(f"Unknown LOG_LEVEL {level!r}, using INFO")
        return "INFO"
    return level


@dataclass(frozen=True)
class WebhookConfig:
    database_id: Optional[str] = None
    collection_id: Optional[str] = None
    webhook_secret: Optional[str] = None
    aws_region: Optional[str] = None
    dynamodb_endpoint_url: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = None) -> "WebhookConfig":
        """
        Construye la configuración a partir del entorno.

        No falla si faltan variables obligatorias: el handler responde 500
        en cada petición mientras falten (ver missing_required).
        """
        if environ is None:
            environ = os.environ
        return cls(
            database_id=_env(environ, "DATABASE_ID"),
            collection_id=_env(environ, "COLLECTION_ID"),
            webhook_secret=_env(environ, "NRFCLOUD_WEBHOOK_SECRET"),
            aws_region=_env(environ, "AWS_REGION"),
            dynamodb_endpoint_url=_env(environ, "DYNAMODB_ENDPOINT_URL"),
            log_level=_log_level(environ),
        )

    def missing_required(self) -> List[str]:
        values = {"DATABASE_ID": self.database_id, "COLLECTION_ID": self.collection_id}
        return [name for name in REQUIRED_VARS if not values[name]]
