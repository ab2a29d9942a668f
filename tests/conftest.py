"""
Shared fixtures for ingestion tests.
"""

import json

import pytest

from polyingest.models import ActivityTrade


@pytest.fixture
def trade_payload():
    """A realistic activity/trades payload as sent by the feed."""
    return {
        "asset": "52114319501245915516055106046884209969926127482827954674443846427813813222426",
        "conditionId": "0x5f65177b394277fd294cd75650044e32ba009a95022d88a0c1d565897d72f8f1",
        "eventSlug": "fed-decision-in-december",
        "name": "whale-watcher",
        "outcome": "Yes",
        "outcomeIndex": 0,
        "price": 0.55,
        "proxyWallet": "0x6af75d4e4aaf700450efbac3708cce1665810ff1",
        "pseudonym": "Quiet-Otter",
        "side": "BUY",
        "size": 100,
        "slug": "fed-cuts-rates-25bps",
        "timestamp": 1718000000,
        "title": "Fed decision in December?",
        "transactionHash": "0xabc",
    }


@pytest.fixture
def sample_trade(trade_payload):
    """The trade_payload decoded into a trade record."""
    return ActivityTrade.model_validate(trade_payload)


@pytest.fixture
def trade_frame(trade_payload) -> bytes:
    """A complete activity/trades frame wrapping trade_payload."""
    return json.dumps({
        "topic": "activity",
        "type": "trades",
        "timestamp": 1718000000123,
        "connection_id": "N3qBkfX5oAMCJ0Q=",
        "payload": trade_payload,
    }).encode("utf-8")
