from __future__ import annotations

import pytest
from web3 import Web3

import selector_siblings


@pytest.fixture
def fake_web3(monkeypatch):
    """Replace web3 in selector_siblings with an offline node; configure it via class attributes."""

    class FakeWeb3:
        code = b""
        error = None
        connected = True
        is_address = staticmethod(Web3.is_address)
        to_checksum_address = staticmethod(Web3.to_checksum_address)

        def __init__(self, provider) -> None:
            self.provider = provider
            self.eth = self

        @staticmethod
        def HTTPProvider(url, request_kwargs=None):
            return url

        def is_connected(self) -> bool:
            return self.connected

        def get_code(self, address, block_identifier="latest"):
            if self.error is not None:
                raise self.error
            return self.code

    monkeypatch.setattr(selector_siblings, "Web3", FakeWeb3)
    return FakeWeb3
