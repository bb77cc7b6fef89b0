import json
import logging
import os
import ssl
from aiomqtt import Client, MqttError

# Compute default certificate path relative to this file
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CA_CERT = os.path.join(BASE_DIR, "mqtt", "iot_mqtt_ca.crt")
CLIENT_CERT = os.path.join(BASE_DIR, "mqtt", "iot_mqtt_client.crt")
CLIENT_KEY = os.path.join(BASE_DIR, "mqtt", "iot_mqtt_client.key")

MQTT_HOST = os.getenv("MQTT_HOST", "localhost")
MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
MQTT_TLS_PORT = int(os.getenv("MQTT_TLS_PORT", "8883"))
MQTT_USERNAME = os.getenv("MQTT_USERNAME")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD")
MQTT_GATE_TOPIC = os.getenv("MQTT_GATE_TOPIC", "parking/gate")
MQTT_TLS_ENABLED = os.getenv("MQTT_TLS_ENABLED", "false").lower() == "true"


class GateActuator:
    """Opens a lot's barrier by publishing an MQTT command. Reports failure as False."""

    def __init__(self, client_factory=Client, tls_enabled: bool = MQTT_TLS_ENABLED):
        self.client_factory = client_factory
        self.tls_enabled = tls_enabled

    def _tls_context(self):
        logging.info("TLS is enabled. Setting up SSL context.")
        tls_context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        tls_context.load_verify_locations(cafile=CA_CERT)
        tls_context.load_cert_chain(certfile=CLIENT_CERT, keyfile=CLIENT_KEY)
        return tls_context

    async def open_gate(self, lot_id: int, license_plate: str) -> bool:
        topic = f"{MQTT_GATE_TOPIC}/{lot_id}"
        message = json.dumps({"command": "open", "license_plate": license_plate})
        try:
            tls_context = self._tls_context() if self.tls_enabled else None
            port = MQTT_TLS_PORT if self.tls_enabled else MQTT_PORT
            logging.info(f"Connecting to MQTT broker at {MQTT_HOST}:{port}")

            async with self.client_factory(
                hostname=MQTT_HOST,
                port=port,
                username=MQTT_USERNAME,
                password=MQTT_PASSWORD,
                tls_context=tls_context
            ) as client:
                await client.publish(topic, message.encode(), qos=1)
                logging.info(f"Published gate open for {license_plate} to '{topic}'")
            return True
        except (MqttError, OSError) as e:
            logging.error(f"MQTT publish failed: {e}")
            return False
