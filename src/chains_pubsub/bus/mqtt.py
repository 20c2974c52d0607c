"""MQTT topic provider (``mqtt://``) using paho-mqtt.

One handle owns one client connection: it connects on open, publishes with
the configured QoS and waits for the broker to acknowledge, then stops the
network loop and disconnects on shutdown. MQTT 3.1.1 has no message headers,
so message metadata is not carried.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping

import paho.mqtt.client as mqtt  # type: ignore[import]

from ..context import Context
from ..errors import ConnectError
from .base import Message

LOG = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 1883
DEFAULT_QOS = 1

_POLL_INTERVAL = 0.05


def _rc_value(reason_code: Any) -> int:
    # paho 2.x hands callbacks a ReasonCode; plain ints still turn up in tests
    return int(getattr(reason_code, "value", reason_code))


class MqttTopic:
    def __init__(
        self,
        topic: str,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        qos: int = DEFAULT_QOS,
        client_id: str = "",
    ) -> None:
        self._topic = topic
        self._host = host
        self._port = port
        self._qos = qos
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._connack = threading.Event()
        self._connect_rc: int | None = None
        self._connected = False
        self._closed = False

    def connect(self, ctx: Context) -> None:
        """Connect and wait for the broker's CONNACK.

        Raises ConnectError when the broker refuses the connection and
        ``Cancelled`` when *ctx* is done before the broker answers.
        """
        ctx.raise_if_done()
        LOG.debug("Connecting to MQTT broker %s:%s", self._host, self._port)
        # Start network loop first so on_connect can fire during connect
        self._client.loop_start()
        try:
            self._client.connect(self._host, self._port)
            while not self._connack.wait(_POLL_INTERVAL):
                ctx.raise_if_done()
            if self._connect_rc != 0:
                raise ConnectError(
                    f"mqtt broker {self._host}:{self._port} refused connection "
                    f"(rc={self._connect_rc})"
                )
        except Exception:
            self._stop_quietly()
            raise

    def send(self, ctx: Context, message: Message) -> None:
        ctx.raise_if_done()
        if self._closed:
            raise RuntimeError(f"mqtt topic {self._topic!r} has been shut down")
        if message.metadata:
            LOG.debug("Dropping metadata %s; MQTT 3.1.1 has no headers", sorted(message.metadata))
        info = self._client.publish(self._topic, message.body, qos=self._qos)
        rc = getattr(info, "rc", 0)
        if rc != 0:
            raise RuntimeError(f"mqtt publish to {self._topic!r} failed (rc={rc})")
        while not info.is_published():
            ctx.wait(_POLL_INTERVAL)
            ctx.raise_if_done()
        LOG.debug("Published %d bytes to %s (qos=%d)", len(message.body), self._topic, self._qos)

    def shutdown(self, ctx: Context) -> None:
        if self._closed:
            raise RuntimeError(f"mqtt topic {self._topic!r} already shut down")
        self._closed = True
        try:
            self._client.loop_stop()
        finally:
            self._client.disconnect()

    def _stop_quietly(self) -> None:
        try:
            self._client.loop_stop()
            self._client.disconnect()
        except Exception:  # pragma: no cover - best-effort cleanup
            LOG.exception("Failed to stop MQTT client after connect failure")

    def _on_connect(
        self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any = None
    ) -> None:
        self._connect_rc = _rc_value(reason_code)
        self._connected = self._connect_rc == 0
        if self._connected:
            LOG.info("MQTT connected to %s:%s", self._host, self._port)
        else:
            LOG.warning("MQTT connect returned rc=%s", reason_code)
        self._connack.set()

    def _on_disconnect(
        self,
        client: Any,
        userdata: Any,
        flags: Any = None,
        reason_code: Any = None,
        properties: Any = None,
    ) -> None:  # pragma: no cover - callback
        LOG.info("MQTT disconnected (rc=%s)", reason_code)
        self._connected = False


def open_topic(ctx: Context, topic: str, options: Mapping[str, str]) -> MqttTopic:
    handle = MqttTopic(
        topic,
        host=options.get("host") or DEFAULT_HOST,
        port=int(options.get("port") or DEFAULT_PORT),
        qos=int(options.get("qos") or DEFAULT_QOS),
        client_id=options.get("client_id", ""),
    )
    handle.connect(ctx)
    return handle


__all__ = ["MqttTopic", "open_topic"]
