"""
En este código simulamos una flota de dispositivos nRF91 que reportan a
nRF Cloud las siguientes lecturas:
1. TEMP: temperatura en °C
2. HUMID: humedad relativa en %
3. GNSS: posición (lat, lng) y precisión en metros

Hay dos formas de enviar los datos:
- mqtt: cada dispositivo publica en su topic d2c de nRF Cloud y el
  Message Routing Service reenvía los mensajes al webhook.
- http: se construyen directamente los envelopes que entrega Message
  Routing y se envían en lote al webhook (útil para probar la Lambda).
"""
import argparse
import json
import math
import os
import random
import ssl
import time
from datetime import datetime, timezone

import paho.mqtt.client as mqtt
import requests

"""
Datos de conexión MQTT. El endpoint y los certificados del dispositivo
se descargan desde el portal de nRF Cloud.
"""
MQTT_ENDPOINT = os.environ.get("NRFCLOUD_MQTT_ENDPOINT", "mqtt.nrfcloud.com")
ROOT_CA = "AmazonRootCA1.pem"
CERT = "device-certificate.pem.crt"
KEY = "device-private.pem.key"

#Puerto seguro para MQTT
PORT = 8883

TEAM_ID = os.environ.get("NRFCLOUD_TEAM_ID", "team-id")
TENANT_ID = os.environ.get("NRFCLOUD_TENANT_ID", "tenant-id")

NUM_DEVICES = 5
PUBLISH_INTERVAL = 10  # seconds

APP_IDS = ("TEMP", "HUMID", "GNSS")

# posición base de la flota
BASE_LAT = 4.7110
BASE_LON = -74.0721


def make_device_list(n):
    """
    Crea n dispositivos con id tipo nrf-352656100000001 y lecturas iniciales.
    """
    devices = []
    for i in range(1, n + 1):
        devices.append({
            "device_id": f"nrf-3526561{i:08d}",
            "temp": random.uniform(18, 26),
            "humidity": random.uniform(30, 60),
            "lat": BASE_LAT + random.uniform(-0.02, 0.02),
            "lon": BASE_LON + random.uniform(-0.02, 0.02),
        })
    return devices


def epoch_millis(moment):
    return int(moment.timestamp() * 1000)


def build_device_message(device, app_id, now=None):
    """
    Mensaje tal como lo publica el firmware en el topic d2c.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    if app_id == "TEMP":
        data = round(device["temp"], 1)
    elif app_id == "HUMID":
        data = round(device["humidity"], 1)
    elif app_id == "GNSS":
        data = {
            "lat": round(device["lat"], 6),
            "lng": round(device["lon"], 6),
            "acc": round(random.uniform(3, 15), 1),
        }
    else:
        raise ValueError(f"Unsupported appId {app_id}")

    return {
        "appId": app_id,
        "messageType": "DATA",
        "data": data,
        "ts": epoch_millis(now),
    }


def device_topic(device_id, team_id=TEAM_ID):
    return f"prod/{team_id}/m/d/{device_id}/d2c"


def build_envelope(device, message, team_id=TEAM_ID, tenant_id=TENANT_ID, received_at=None):
    """
    Envelope que entrega Message Routing al destino HTTP.
    """
    if received_at is None:
        received_at = datetime.now(timezone.utc)
    return {
        "teamId": team_id,
        "tenantId": tenant_id,
        "deviceId": device["device_id"],
        "topic": device_topic(device["device_id"], team_id),
        "receivedAt": received_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "message": message,
    }


def build_batch(devices, team_id=TEAM_ID, now=None):
    """Un mensaje por dispositivo y appId, agrupados en {"messages": [...]}"""
    messages = []
    for device in devices:
        for app_id in APP_IDS:
            message = build_device_message(device, app_id, now)
            messages.append(build_envelope(device, message, team_id, received_at=now))
    return {"messages": messages}


def step_device(device):
    """
    Variamos las lecturas un poco en cada ciclo.
    """
    device["temp"] = min(45, max(-10, device["temp"] + random.uniform(-0.5, 0.5)))
    device["humidity"] = min(100, max(0, device["humidity"] + random.uniform(-2, 2)))
    # ~ 10 m de desplazamiento aleatorio (1° de latitud ~ 111 km)
    delta = 0.01 / 111.0
    device["lat"] += delta * random.uniform(-1, 1)
    device["lon"] += delta * random.uniform(-1, 1) / abs(math.cos(math.radians(device["lat"])))


def on_connect(client, userdata, flags, reason_code, properties):
    # reason_code 0 = conexión exitosa
    print("Connected with rc:", reason_code)


def connect_mqtt(client_id):
    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
    client.tls_set(ca_certs=ROOT_CA, certfile=CERT, keyfile=KEY, tls_version=ssl.PROTOCOL_TLSv1_2)
    client.on_connect = on_connect
    client.connect(MQTT_ENDPOINT, PORT, keepalive=60)
    client.loop_start()
    return client


def publish_mqtt(client, device, team_id=TEAM_ID):
    for app_id in APP_IDS:
        message = build_device_message(device, app_id)
        client.publish(device_topic(device["device_id"], team_id), json.dumps(message), qos=1)


def post_to_webhook(url, payload, secret=None, timeout=10):
    """
    Envía un lote al webhook. Devuelve el JSON de la respuesta.

    Raises:
        requests.HTTPError: si el webhook responde con error
    """
    headers = {"Content-Type": "application/json"}
    if secret:
        headers["Authorization"] = f"Bearer {secret}"
    response = requests.post(url, json=payload, headers=headers, timeout=timeout)
    response.raise_for_status()
    return response.json()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Simulador de dispositivos nRF Cloud")
    parser.add_argument("--mode", choices=("mqtt", "http"), default="http")
    parser.add_argument("--url", default=os.environ.get("WEBHOOK_URL"), help="URL del webhook (modo http)")
    parser.add_argument("--secret", default=os.environ.get("NRFCLOUD_WEBHOOK_SECRET"))
    parser.add_argument("--devices", type=int, default=NUM_DEVICES)
    parser.add_argument("--interval", type=float, default=PUBLISH_INTERVAL)
    parser.add_argument("--once", action="store_true", help="un solo ciclo y salir")
    args = parser.parse_args(argv)
    if args.mode == "http" and not args.url:
        parser.error("--url (o WEBHOOK_URL) es obligatorio en modo http")
    return args


def main(argv=None):
    args = parse_args(argv)
    devices = make_device_list(args.devices)

    client = None
    if args.mode == "mqtt":
        client = connect_mqtt(f"simulator-{TEAM_ID}")

    try:
        #Ejecuta el simulador de forma continua
        while True:
            if client is not None:
                for device in devices:
                    publish_mqtt(client, device)
            else:
                result = post_to_webhook(args.url, build_batch(devices), args.secret)
                print(f"Webhook: {result.get('successful')}/{result.get('processed')} documentos creados")

            for device in devices:
                step_device(device)

            if args.once:
                break
            time.sleep(args.interval)
    #El ciclo se interrumpe mediante ctrl + c
    except KeyboardInterrupt:
        pass
    finally:
        if client is not None:
            client.loop_stop()
            client.disconnect()


if __name__ == "__main__":
    main()
