"""Tests for the pubsub storage backend."""

from __future__ import annotations

import base64
import json
import logging
import threading

import pytest

from chains_pubsub.backend import PubSubBackend, build_message
from chains_pubsub.bus import memory, open_topic
from chains_pubsub.config import PubSubConfig
from chains_pubsub.context import Cancelled, Context, DeadlineExceeded
from chains_pubsub.errors import ConfigError, ConnectError, PublishError
from chains_pubsub.types import RunIdentity, StorageOpts, TopicConfig

RUN = RunIdentity(name="foo", namespace="bar")
INTOTO = StorageOpts(payload_format="in-toto")
STATEMENT = json.dumps({"_type": "https://in-toto.io/Statement/v0.1"}).encode()


class CountingTopic:
    """Topic handle double that records every call."""

    def __init__(self, send_error=None, shutdown_error=None, block=False):
        self.sent = []
        self.shutdowns = []
        self._send_error = send_error
        self._shutdown_error = shutdown_error
        self._block = block

    def send(self, ctx, message):
        if self._block:
            while not ctx.wait(0.01):
                pass
            ctx.raise_if_done()
        if self._send_error is not None:
            raise self._send_error
        self.sent.append(message)

    def shutdown(self, ctx):
        self.shutdowns.append(ctx)
        if self._shutdown_error is not None:
            raise self._shutdown_error


class CountingOpener:
    def __init__(self, open_error=None, **topic_kwargs):
        self.opened = []
        self.handles = []
        self._open_error = open_error
        self._topic_kwargs = topic_kwargs

    def __call__(self, ctx, uri):
        self.opened.append(uri)
        if self._open_error is not None:
            raise self._open_error
        handle = CountingTopic(**self._topic_kwargs)
        self.handles.append(handle)
        return handle


def _backend(opener=None, cfg=None, **kwargs):
    cfg = cfg or TopicConfig(provider="inmemory", topic="test")
    if opener is None:
        return PubSubBackend(cfg, **kwargs)
    return PubSubBackend(cfg, opener=opener, **kwargs)


def test_store_payload_publishes_signature_to_subscribers():
    ctx = Context.background()
    topic = open_topic(ctx, "mem://test")
    sub = memory.open_subscription(ctx, "mem://test")
    try:
        _backend().store_payload(ctx, RUN, STATEMENT, "signature", INTOTO)

        msg = sub.receive(Context(timeout=1))
        assert msg.body == b"signature"
        assert msg.metadata == {"payload_format": "in-toto"}
        msg.ack()

        with pytest.raises(DeadlineExceeded):
            sub.receive(Context(timeout=0.1))
    finally:
        sub.shutdown(ctx)
        topic.shutdown(ctx)


def test_exactly_one_send_and_one_release_on_success():
    opener = CountingOpener()

    _backend(opener).store_payload(Context.background(), RUN, STATEMENT, "sig", INTOTO)

    assert opener.opened == ["mem://test"]
    (handle,) = opener.handles
    assert len(handle.sent) == 1
    assert len(handle.shutdowns) == 1


@pytest.mark.parametrize(
    "cfg",
    [TopicConfig(provider="", topic="test"), TopicConfig(provider="inmemory", topic="")],
)
def test_config_error_sends_nothing(cfg):
    opener = CountingOpener()

    with pytest.raises(ConfigError):
        _backend(opener, cfg=cfg).store_payload(
            Context.background(), RUN, STATEMENT, "sig", INTOTO
        )

    assert opener.opened == []


def test_config_error_leaves_mem_topic_empty():
    ctx = Context.background()
    open_topic(ctx, "mem://test")
    sub = memory.open_subscription(ctx, "mem://test")

    with pytest.raises(ConfigError):
        _backend(cfg=TopicConfig(provider="inmemory", topic="")).store_payload(
            ctx, RUN, STATEMENT, "sig", INTOTO
        )

    assert sub.pending() == 0


def test_open_failure_wrapped_as_connect_error():
    opener = CountingOpener(open_error=OSError("connection refused"))

    with pytest.raises(ConnectError, match="connection refused") as info:
        _backend(opener).store_payload(Context.background(), RUN, STATEMENT, "sig", INTOTO)

    assert isinstance(info.value.__cause__, OSError)
    assert opener.handles == []


def test_connect_error_from_opener_passes_through():
    original = ConnectError("no provider registered")
    opener = CountingOpener(open_error=original)

    with pytest.raises(ConnectError) as info:
        _backend(opener).store_payload(Context.background(), RUN, STATEMENT, "sig", INTOTO)

    assert info.value is original


def test_cancellation_during_open_is_publish_error():
    opener = CountingOpener(open_error=Cancelled("context cancelled"))

    with pytest.raises(PublishError, match="cancelled") as info:
        _backend(opener).store_payload(Context.background(), RUN, STATEMENT, "sig", INTOTO)

    assert isinstance(info.value.__cause__, Cancelled)
    assert opener.opened == ["mem://test"]
    assert opener.handles == []


def test_send_failure_releases_handle_and_raises_publish_error():
    opener = CountingOpener(send_error=RuntimeError("quota exceeded"))

    with pytest.raises(PublishError, match="quota exceeded") as info:
        _backend(opener).store_payload(Context.background(), RUN, STATEMENT, "sig", INTOTO)

    assert isinstance(info.value.__cause__, RuntimeError)
    (handle,) = opener.handles
    assert handle.sent == []
    assert len(handle.shutdowns) == 1


def test_already_cancelled_context_opens_nothing():
    opener = CountingOpener()
    ctx = Context()
    ctx.cancel()

    with pytest.raises(PublishError) as info:
        _backend(opener).store_payload(ctx, RUN, STATEMENT, "sig", INTOTO)

    assert isinstance(info.value.__cause__, Cancelled)
    assert opener.opened == []


def test_cancellation_during_send_returns_promptly_and_releases():
    opener = CountingOpener(block=True)
    ctx = Context()
    timer = threading.Timer(0.05, ctx.cancel)
    timer.start()
    try:
        with pytest.raises(PublishError) as info:
            _backend(opener).store_payload(ctx, RUN, STATEMENT, "sig", INTOTO)
    finally:
        timer.cancel()

    assert isinstance(info.value.__cause__, Cancelled)
    (handle,) = opener.handles
    assert len(handle.shutdowns) == 1
    # released with a live context even though the call was cancelled
    assert not handle.shutdowns[0].done()


def test_deadline_during_send_is_publish_error():
    opener = CountingOpener(block=True)

    with pytest.raises(PublishError) as info:
        _backend(opener).store_payload(Context(timeout=0.1), RUN, STATEMENT, "sig", INTOTO)

    assert isinstance(info.value.__cause__, DeadlineExceeded)
    assert len(opener.handles[0].shutdowns) == 1


def test_cleanup_failure_is_logged_not_raised(caplog):
    opener = CountingOpener(shutdown_error=RuntimeError("socket already closed"))

    with caplog.at_level(logging.WARNING):
        _backend(opener).store_payload(Context.background(), RUN, STATEMENT, "sig", INTOTO)

    assert "CleanupWarning" in caplog.text
    assert "socket already closed" in caplog.text
    assert len(opener.handles[0].sent) == 1


def test_cleanup_failure_does_not_mask_send_failure(caplog):
    opener = CountingOpener(
        send_error=RuntimeError("broker down"),
        shutdown_error=RuntimeError("close failed"),
    )

    with caplog.at_level(logging.WARNING), pytest.raises(PublishError, match="broker down"):
        _backend(opener).store_payload(Context.background(), RUN, STATEMENT, "sig", INTOTO)

    assert "close failed" in caplog.text


def test_injected_logger_is_used(caplog):
    logger = logging.getLogger("tests.chains.injected")

    with caplog.at_level(logging.INFO, logger="tests.chains.injected"):
        _backend(CountingOpener(), logger=logger).store_payload(
            Context.background(), RUN, STATEMENT, "sig", INTOTO
        )

    records = [r for r in caplog.records if r.name == "tests.chains.injected"]
    assert any("TaskRun/bar/foo" in r.getMessage() for r in records)


def test_concurrent_calls_use_separate_handles():
    opener = CountingOpener()
    backend = _backend(opener)
    threads = [
        threading.Thread(
            target=backend.store_payload,
            args=(Context.background(), RUN, STATEMENT, f"sig-{i}", INTOTO),
        )
        for i in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(opener.handles) == 8
    assert all(len(h.sent) == 1 and len(h.shutdowns) == 1 for h in opener.handles)


def test_payload_and_envelope_bodies():
    payload_msg = build_message(STATEMENT, "sig", INTOTO, body="payload")
    assert payload_msg.body == STATEMENT

    envelope = json.loads(build_message(STATEMENT, "sig", INTOTO, body="envelope").body)
    assert envelope == {
        "payload": base64.b64encode(STATEMENT).decode("ascii"),
        "payloadFormat": "in-toto",
        "signature": "sig",
    }


def test_no_metadata_without_payload_format():
    assert build_message(STATEMENT, "sig", StorageOpts()).metadata == {}


def test_invalid_backend_settings_rejected():
    with pytest.raises(ConfigError):
        _backend(message_body="both")
    with pytest.raises(ConfigError):
        _backend(shutdown_timeout=0)


def test_from_config_applies_body_policy():
    opener = CountingOpener()
    config = PubSubConfig(
        topic=TopicConfig(provider="inmemory", topic="test"),
        message_body="payload",
    )

    backend = PubSubBackend.from_config(config, opener=opener)
    backend.store_payload(Context.background(), RUN, STATEMENT, "sig", INTOTO)

    assert opener.handles[0].sent[0].body == STATEMENT


def test_backend_type_and_retrieval():
    backend = _backend(CountingOpener())

    assert backend.type() == "pubsub"
    with pytest.raises(NotImplementedError, match="pubsub"):
        backend.retrieve_signatures(Context.background(), RUN, INTOTO)
    with pytest.raises(NotImplementedError, match="pubsub"):
        backend.retrieve_payloads(Context.background(), RUN, INTOTO)
