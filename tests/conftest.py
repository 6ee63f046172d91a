"""Shared fakes for account subscriptions."""

import asyncio
import base64
import struct
from contextlib import asynccontextmanager

import pytest

from execution.rpc import AccountNotification, SubscriptionError


def spl_account_data(amount: int) -> list:
    """Base64 account data of an SPL token account holding `amount`."""
    raw = bytes(32) + bytes(32) + struct.pack("<Q", amount) + bytes(165 - 72)
    return [base64.b64encode(raw).decode(), "base64"]


class FakeSubscription:
    """Replays queued notifications, then hangs or ends."""

    def __init__(self, notifications=(), hang=False):
        self.pending = list(notifications)
        self.hang = hang

    async def next_update(self) -> AccountNotification:
        if self.pending:
            return self.pending.pop(0)
        if self.hang:
            await asyncio.Event().wait()
        raise SubscriptionError("stream closed")

    def __aiter__(self):
        return self

    async def __anext__(self) -> AccountNotification:
        if self.pending:
            return self.pending.pop(0)
        if self.hang:
            await asyncio.Event().wait()
        raise StopAsyncIteration


class FakePubsub:
    """Stands in for PubsubClient; counts subscribe/unsubscribe calls."""

    def __init__(self, subscription=None, fail=False):
        self.subscription = subscription or FakeSubscription()
        self.fail = fail
        self.subscribed = []
        self.unsubscribe_count = 0

    @asynccontextmanager
    async def account_subscribe(self, account, commitment="processed", encoding="base64"):
        if self.fail:
            raise SubscriptionError("connection refused")
        self.subscribed.append(str(account))
        try:
            yield self.subscription
        finally:
            self.unsubscribe_count += 1


@pytest.fixture
def make_pubsub():
    def _make(notifications=(), hang=False, fail=False):
        return FakePubsub(FakeSubscription(notifications, hang=hang), fail=fail)
    return _make


@pytest.fixture
def spl_data():
    return spl_account_data
