"""Shared fixtures. Points storage at a temp dir before the app module is imported."""

import os
import sys
import tempfile
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
os.environ.setdefault('NFT_STORAGE_PATH', tempfile.mkdtemp(prefix='nft-storage-'))

from errors import LedgerCallReverted  # noqa: E402

CONTRACT = '0x' + '11' * 20
PRIVATE_KEY = '0x4f3edf983ac636a65a842ce7c78d9aa706d3b113bce9c46f30d7d21715b23b1d'
DEPLOYER = '0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1'
ALICE = '0x' + 'ab' * 20
BOB = '0x' + 'cd' * 20
SHOUTY = '0xABCD' + 'EF01' * 9
IMAGE_URL = 'https://example.com/item.png'


class FakeStore:
    """Persisted defaults held in memory."""

    def __init__(self, contract_address=CONTRACT, private_key=PRIVATE_KEY, owner_address=DEPLOYER):
        self._contract_address = contract_address
        self._private_key = private_key
        self._owner_address = owner_address

    def contract_address(self):
        return self._contract_address

    def load_private_key(self):
        return self._private_key

    def owner_address(self):
        return self._owner_address or 'unknown'


class FakeGateway:
    """
    In-memory ERC-721 contract behind the LedgerGateway interface.

    Also acts as its own gateway factory. ``fail`` maps a method name to True
    (always fail) or a set of last-argument values that fail.
    """

    def __init__(self, owners=None, token_uris=None, enumerable=True, accepted_entry_points=('mint',)):
        self.owners = dict(owners or {})
        self.token_uris = dict(token_uris or {})
        self.enumerable = enumerable
        self.accepted_entry_points = set(accepted_entry_points)
        self.fail = {}
        self.supply = None
        self.receipts = None
        self.emit_transfer = True
        self.transfer_error = None
        self.calls = []
        self.submissions = []
        self.configs = []
        self.receipt_polls = 0
        self._pending = {}

    def __call__(self, config):
        self.configs.append(config)
        return self

    def call(self, method, *args):
        self.calls.append((method, args))
        rule = self.fail.get(method)
        key = args[-1] if args else None
        if rule is True or (rule and key in rule):
            raise LedgerCallReverted(f'{method}{args} reverted')
        return getattr(self, '_' + method)(*args)

    def _owned_by(self, owner):
        return [token_id for token_id, holder in self.owners.items() if holder.lower() == owner.lower()]

    def _balanceOf(self, owner):
        return len(self._owned_by(owner))

    def _tokenOfOwnerByIndex(self, owner, index):
        owned = self._owned_by(owner)
        if not self.enumerable or index >= len(owned):
            raise LedgerCallReverted('tokenOfOwnerByIndex reverted')
        return owned[index]

    def _ownerOf(self, token_id):
        if token_id not in self.owners:
            raise LedgerCallReverted('ERC721: invalid token ID')
        return self.owners[token_id]

    def _tokenURI(self, token_id):
        if token_id not in self.token_uris:
            raise LedgerCallReverted('ERC721: invalid token ID')
        return self.token_uris[token_id]

    def _totalSupply(self):
        if self.supply is not None:
            return self.supply
        return max(self.owners, default=0)

    def submit(self, method, to, metadata):
        self.submissions.append((method, to, metadata))
        if method not in self.accepted_entry_points:
            raise LedgerCallReverted(f'{method} is not supported by this contract')
        token_id = max(self.owners, default=0) + 1
        self.owners[token_id] = to
        self.token_uris[token_id] = metadata
        tx_hash = '0x%064x' % token_id
        self._pending[tx_hash] = token_id
        return tx_hash

    def get_receipt(self, tx_hash):
        self.receipt_polls += 1
        if self.receipts is not None:
            outcome = self.receipts.pop(0) if len(self.receipts) > 1 else self.receipts[0]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return {'status': 1, 'blockNumber': 100, 'transactionHash': tx_hash,
                'tokenId': self._pending.get(tx_hash)}

    def transfer_token_ids(self, receipt):
        if self.transfer_error is not None:
            raise self.transfer_error
        if not self.emit_transfer or receipt.get('tokenId') is None:
            return []
        return [receipt['tokenId']]


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def flask_app(gateway, store):
    from app import create_app

    flask_app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'ENDPOINT_KEY': 'test-key',
        'PROBE_IMAGE_URLS': False,
        'GATEWAY_FACTORY': gateway,
        'CONFIG_STORE': store,
    })
    yield flask_app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def auth():
    return {'X-API-Key': 'test-key'}
