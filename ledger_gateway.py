"""
Thin wrapper around one JSON-RPC endpoint and the game item contract.

Reads return decoded values. Writes return the transaction hash as soon as
the node accepts the signed transaction; waiting for a receipt is left to
transaction_tracker.
"""
import logging

from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import (
    ABIFunctionNotFound,
    BadFunctionCallOutput,
    ContractLogicError,
    TransactionNotFound,
    Web3Exception,
)
from web3.logs import DISCARD

from errors import ConfigurationError, LedgerCallReverted, LedgerUnavailable

logger = logging.getLogger(__name__)

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'
RPC_TIMEOUT = 30

_REJECTED = (ContractLogicError, BadFunctionCallOutput, ABIFunctionNotFound)
_UNAVAILABLE = (Web3Exception, RequestException, ValueError, OSError)


def _fn(name, inputs, outputs, mutability='view'):
    return {
        'inputs': [{'internalType': t, 'name': n, 'type': t} for n, t in inputs],
        'name': name,
        'outputs': [{'internalType': t, 'name': '', 'type': t} for t in outputs],
        'stateMutability': mutability,
        'type': 'function',
    }


# Union of the surfaces seen on deployed game item contracts. Not every
# contract implements every entry; callers handle LedgerCallReverted.
GAME_ITEM_ABI = [
    _fn('balanceOf', [('owner', 'address')], ['uint256']),
    _fn('tokenOfOwnerByIndex', [('owner', 'address'), ('index', 'uint256')], ['uint256']),
    _fn('tokenURI', [('tokenId', 'uint256')], ['string']),
    _fn('ownerOf', [('tokenId', 'uint256')], ['address']),
    _fn('totalSupply', [], ['uint256']),
    _fn('mint', [('to', 'address'), ('metadata', 'string')], ['uint256'], 'nonpayable'),
    _fn('safeMint', [('to', 'address'), ('tokenURI', 'string')], ['uint256'], 'nonpayable'),
    _fn('mintWithMetadata', [('to', 'address'), ('metadata', 'string')], ['uint256'], 'nonpayable'),
    {
        'anonymous': False,
        'inputs': [
            {'indexed': True, 'internalType': 'address', 'name': 'from', 'type': 'address'},
            {'indexed': True, 'internalType': 'address', 'name': 'to', 'type': 'address'},
            {'indexed': True, 'internalType': 'uint256', 'name': 'tokenId', 'type': 'uint256'},
        ],
        'name': 'Transfer',
        'type': 'event',
    },
]


def checksum(address):
    return Web3.to_checksum_address(address)


class LedgerGateway:

    def __init__(self, config, web3=None):
        self.config = config
        self.web3 = web3 or Web3(Web3.HTTPProvider(
            config.endpoint_url, request_kwargs={'timeout': RPC_TIMEOUT}))
        self.contract = self.web3.eth.contract(address=config.contract_address, abi=GAME_ITEM_ABI)
        self.account = None
        if config.signing_credential:
            try:
                self.account = self.web3.eth.account.from_key(config.signing_credential)
            except ValueError as e:
                raise ConfigurationError(f'Invalid private key: {e}') from e

    @property
    def signer_address(self):
        return self.account.address if self.account else None

    def call(self, method, *args):
        try:
            return getattr(self.contract.functions, method)(*args).call()
        except _REJECTED as e:
            raise LedgerCallReverted(f'{method} rejected by contract: {e}') from e
        except _UNAVAILABLE as e:
            raise LedgerUnavailable(f'{method} call failed: {e}') from e

    def submit(self, method, *args):
        """Sign and send a contract write. Returns the tx hash without waiting."""
        if self.account is None:
            raise ConfigurationError('A signing credential is required for writes')
        try:
            txn = getattr(self.contract.functions, method)(*args).build_transaction({
                'from': self.account.address,
                'nonce': self.web3.eth.get_transaction_count(self.account.address, 'pending'),
            })
            signed_txn = self.account.sign_transaction(txn)
            tx_hash = self.web3.eth.send_raw_transaction(signed_txn.raw_transaction)
        except _REJECTED as e:
            raise LedgerCallReverted(f'{method} rejected by contract: {e}') from e
        except _UNAVAILABLE as e:
            raise LedgerUnavailable(f'{method} submission failed: {e}') from e
        return Web3.to_hex(tx_hash)

    def get_receipt(self, tx_hash):
        """Receipt for tx_hash, or None while the node does not know it yet."""
        try:
            return self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except _UNAVAILABLE as e:
            raise LedgerUnavailable(f'Receipt lookup for {tx_hash} failed: {e}') from e

    def transfer_token_ids(self, receipt):
        """Token ids from this contract's Transfer events, mints first."""
        events = self.contract.events.Transfer().process_receipt(receipt, errors=DISCARD)
        contract_address = self.config.contract_address.lower()
        mints, transfers = [], []
        for event in events:
            if str(event['address']).lower() != contract_address:
                continue
            args = event['args']
            bucket = mints if str(args['from']).lower() == ZERO_ADDRESS else transfers
            bucket.append(int(args['tokenId']))
        return mints + transfers
