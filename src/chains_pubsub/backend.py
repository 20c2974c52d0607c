"""Storage backend that publishes signed attestations to a message bus.

Each :meth:`PubSubBackend.store_payload` call resolves the configured topic,
opens its own handle, sends exactly one message and releases the handle
before returning. The backend keeps no state between calls beyond its
immutable configuration, so one instance may serve concurrent callers.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Callable, Optional

from .bus import Message, TopicHandle, open_topic
from .config import PubSubConfig
from .context import Cancelled, Context
from .errors import CleanupWarning, ConfigError, ConnectError, PublishError
from .resolver import resolve
from .types import RunIdentity, StorageOpts, TopicConfig

LOG = logging.getLogger(__name__)

STORAGE_BACKEND_PUBSUB = "pubsub"

MESSAGE_BODIES = ("signature", "payload", "envelope")

TopicOpenFunc = Callable[[Context, str], TopicHandle]


def build_message(
    raw_payload: bytes,
    signature: str,
    opts: StorageOpts,
    body: str = "signature",
) -> Message:
    """Construct the outgoing message according to the *body* policy.

    ``signature`` sends the detached signature, ``payload`` the raw payload,
    and ``envelope`` a JSON document carrying both.
    """
    if body == "signature":
        data = signature.encode("utf-8")
    elif body == "payload":
        data = bytes(raw_payload)
    elif body == "envelope":
        data = json.dumps(
            {
                "payload": base64.b64encode(raw_payload).decode("ascii"),
                "payloadFormat": opts.payload_format,
                "signature": signature,
            },
            sort_keys=True,
        ).encode("utf-8")
    else:
        raise ConfigError(f"unknown message body policy {body!r}")

    metadata = {}
    if opts.payload_format:
        metadata["payload_format"] = opts.payload_format
    return Message(body=data, metadata=metadata)


class PubSubBackend:
    def __init__(
        self,
        cfg: TopicConfig,
        *,
        logger: Optional[logging.Logger] = None,
        opener: TopicOpenFunc = open_topic,
        message_body: str = "signature",
        shutdown_timeout: float = 5.0,
    ) -> None:
        if message_body not in MESSAGE_BODIES:
            raise ConfigError(
                f"message_body must be one of {', '.join(MESSAGE_BODIES)}; got {message_body!r}"
            )
        if shutdown_timeout <= 0:
            raise ConfigError("shutdown_timeout must be positive")
        self._cfg = cfg
        self._logger = logger or LOG
        self._opener = opener
        self._message_body = message_body
        self._shutdown_timeout = shutdown_timeout

    @classmethod
    def from_config(
        cls,
        config: PubSubConfig,
        logger: Optional[logging.Logger] = None,
        opener: TopicOpenFunc = open_topic,
    ) -> "PubSubBackend":
        return cls(
            config.topic,
            logger=logger,
            opener=opener,
            message_body=config.message_body,
            shutdown_timeout=config.shutdown_timeout,
        )

    def type(self) -> str:
        return STORAGE_BACKEND_PUBSUB

    def store_payload(
        self,
        ctx: Context,
        run: RunIdentity,
        raw_payload: bytes,
        signature: str,
        opts: StorageOpts,
    ) -> None:
        """Publish one message for a signed payload.

        Raises ConfigError when the topic configuration is unusable,
        ConnectError when the topic cannot be opened and PublishError when
        sending fails or *ctx* is cancelled.
        """
        uri = resolve(self._cfg)

        if ctx.done():
            raise PublishError(f"publish to {uri} for {run} cancelled before open") from ctx.err()

        try:
            topic = self._opener(ctx, uri)
        except Cancelled as exc:
            raise PublishError(f"opening topic {uri} for {run} cancelled: {exc}") from exc
        except ConnectError:
            raise
        except Exception as exc:
            raise ConnectError(f"opening topic {uri}: {exc}") from exc

        try:
            message = build_message(raw_payload, signature, opts, self._message_body)
            self._logger.debug(
                "Sending %d byte %s message for %s to %s",
                len(message.body),
                self._message_body,
                run,
                uri,
            )
            try:
                topic.send(ctx, message)
            except Exception as exc:
                self._logger.error("Publishing attestation for %s to %s failed: %s", run, uri, exc)
                raise PublishError(f"sending to topic {uri}: {exc}") from exc
        finally:
            self._release(topic, uri)

        self._logger.info(
            "Published %s attestation for %s to %s",
            opts.payload_format or "unformatted",
            run,
            uri,
        )

    def retrieve_signatures(self, ctx: Context, run: RunIdentity, opts: StorageOpts):
        raise NotImplementedError(f"not implemented for this storage backend: {self.type()}")

    def retrieve_payloads(self, ctx: Context, run: RunIdentity, opts: StorageOpts):
        raise NotImplementedError(f"not implemented for this storage backend: {self.type()}")

    def _release(self, topic: TopicHandle, uri: str) -> None:
        # fresh context: a cancelled call must still release its handle
        cleanup_ctx = Context(timeout=self._shutdown_timeout)
        try:
            topic.shutdown(cleanup_ctx)
        except Exception as exc:
            warning = CleanupWarning(f"failed to release topic {uri}: {exc}")
            self._logger.warning("%s: %s", type(warning).__name__, warning)


__all__ = ["PubSubBackend", "STORAGE_BACKEND_PUBSUB", "MESSAGE_BODIES", "build_message"]
