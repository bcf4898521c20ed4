"""
Normalización de los mensajes que entrega el Message Routing Service de nRF Cloud.

Formato esperado de cada envelope (destino HTTP):
{
  "deviceId": "device-id",
  "tenantId": "tenant-id",
  "topic": "prod/<team-id>/m/d/<device-id>/d2c",
  "receivedAt": "2024-01-15T10:30:00.000Z",
  "message": {
    "appId": "TEMP",
    "messageType": "DATA",
    "data": 23.5,
    "ts": 1705315800000
  }
}

El resultado es un registro plano con todos los campos presentes, listo para
guardarse como documento.
"""
import json
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

DEFAULT_APP_ID = "UNKNOWN"
DEFAULT_MESSAGE_TYPE = "DATA"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_ABSENT = object()


class InvalidEnvelopeError(ValueError):
    """El envelope no se puede normalizar ni siquiera aplicando los valores por defecto."""
    pass


class DataKind(str, Enum):
    """Tipo JSON del campo message.data antes de convertirlo a texto."""
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    OBJECT = "object"
    ARRAY = "array"
    UNDEFINED = "undefined"


def data_kind(value=_ABSENT) -> DataKind:
    if value is _ABSENT:
        return DataKind.UNDEFINED
    if value is None:
        return DataKind.NULL
    # bool es subclase de int, va primero
    if isinstance(value, bool):
        return DataKind.BOOLEAN
    if isinstance(value, (int, float)):
        return DataKind.NUMBER
    if isinstance(value, str):
        return DataKind.STRING
    if isinstance(value, (list, tuple)):
        return DataKind.ARRAY
    if isinstance(value, dict):
        return DataKind.OBJECT
    raise InvalidEnvelopeError(f"Unsupported data value of type {type(value).__name__}")


def to_json(value) -> str:
    # Compacto y sin escapar unicode, igual que lo serializa nRF Cloud
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _number_to_string(value) -> str:
    """
    Texto de un número tal como lo escribe JavaScript (String(n)).

    Notación decimal entre 1e-6 y 1e21; fuera de ese rango, exponente sin
    ceros a la izquierda (1e-7, 1.5e+21).
    """
    if isinstance(value, int):
        if abs(value) < 10 ** 21:
            return str(value)
        value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    # repr da los dígitos mínimos que reproducen el float, igual que JS
    sign, raw_digits, exponent = Decimal(repr(value)).as_tuple()
    digits = "".join(str(d) for d in raw_digits)
    stripped = digits.rstrip("0")
    exponent += len(digits) - len(stripped)
    digits = stripped

    k = len(digits)
    n = k + exponent
    prefix = "-" if sign else ""

    if k <= n <= 21:
        return prefix + digits + "0" * (n - k)
    if 0 < n <= 21:
        return prefix + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return prefix + "0." + "0" * -n + digits

    e = n - 1
    mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
    return f"{prefix}{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"


def data_to_string(value, kind: DataKind) -> str:
    """
    Convierte message.data a texto para la columna dataValue.

    Objetos y arrays se guardan como JSON; los escalares como su literal
    JSON (23.5, true, texto); null o ausente como cadena vacía.
    """
    if kind in (DataKind.UNDEFINED, DataKind.NULL):
        return ""
    if kind in (DataKind.OBJECT, DataKind.ARRAY):
        return to_json(value)
    if kind is DataKind.BOOLEAN:
        return "true" if value else "false"
    if kind is DataKind.NUMBER:
        return _number_to_string(value)
    return value


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 en UTC con milisegundos, p.ej. 2024-01-15T10:30:00.000Z"""
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_timestamp(value) -> datetime:
    """
    Interpreta ts/time: milisegundos desde epoch o una cadena ISO-8601.
    """
    if isinstance(value, bool):
        raise InvalidEnvelopeError("Invalid time value")

    if isinstance(value, (int, float)):
        try:
            return EPOCH + timedelta(milliseconds=value)
        except (OverflowError, ValueError):
            raise InvalidEnvelopeError("Invalid time value")

    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise InvalidEnvelopeError(f"Invalid time value: {value!r}")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    raise InvalidEnvelopeError("Invalid time value")


def _received_at_to_string(value) -> str:
    # receivedAt es informativo: un número se toma como epoch en ms y
    # cualquier otro valor se guarda como su JSON
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return format_timestamp(parse_timestamp(value))
        except InvalidEnvelopeError:
            pass
    return to_json(value)


def normalize_message(envelope, now: datetime = None) -> dict:
    """
    Convierte un envelope de nRF Cloud en el registro que se guarda.

    Todos los campos quedan rellenos. Los valores vacíos ("" , 0, null) se
    tratan como ausentes y toman su valor por defecto.

    Args:
        envelope: un mensaje del webhook (dict ya parseado)
        now: instante de procesamiento; por defecto la hora actual UTC

    Raises:
        InvalidEnvelopeError: si el envelope no es un objeto o el tiempo es inválido
    """
    if not isinstance(envelope, dict):
        raise InvalidEnvelopeError("Envelope must be a JSON object")

    if now is None:
        now = datetime.now(timezone.utc)

    message = envelope.get("message", _ABSENT)
    fields = message if isinstance(message, dict) else {}

    data = fields.get("data", _ABSENT)
    kind = data_kind(data)

    ts = fields.get("ts") or fields.get("time")
    timestamp = parse_timestamp(ts) if ts else now

    received_at = envelope.get("receivedAt")
    if received_at and not isinstance(received_at, str):
        received_at = _received_at_to_string(received_at)

    return {
        "teamId": envelope.get("teamId"),
        "deviceId": envelope.get("deviceId"),
        "tenantId": envelope.get("tenantId") or None,
        "topic": envelope.get("topic") or None,
        "appId": fields.get("appId") or DEFAULT_APP_ID,
        "messageType": fields.get("messageType") or DEFAULT_MESSAGE_TYPE,
        "timestamp": format_timestamp(timestamp),
        "receivedAt": received_at or format_timestamp(now),
        "dataValue": data_to_string(data, kind),
        "dataType": kind.value,
        "rawMessage": to_json(None if message is _ABSENT else message),
        "createdAt": format_timestamp(now),
    }
