from unittest.mock import MagicMock

import pytest
import requests
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TransactionNotFound

from config_resolver import Configuration
from conftest import ALICE, CONTRACT, DEPLOYER, PRIVATE_KEY
from errors import ConfigurationError, LedgerCallReverted, LedgerUnavailable
from ledger_gateway import GAME_ITEM_ABI, ZERO_ADDRESS, LedgerGateway

TX = b'\xab' * 32


def make_gateway(signing_credential=None):
    web3 = MagicMock()
    config = Configuration(contract_address=CONTRACT, endpoint_url='http://localhost:8545',
                           signing_credential=signing_credential)
    return LedgerGateway(config, web3=web3), web3


def contract_function(gateway, name):
    return getattr(gateway.contract.functions, name).return_value


def test_abi_covers_every_contract_surface():
    names = {entry['name'] for entry in GAME_ITEM_ABI}
    assert names == {'balanceOf', 'tokenOfOwnerByIndex', 'tokenURI', 'ownerOf', 'totalSupply',
                     'mint', 'safeMint', 'mintWithMetadata', 'Transfer'}


def test_real_web3_contract_and_signer():
    config = Configuration(contract_address=CONTRACT, endpoint_url='http://127.0.0.1:1',
                           signing_credential=PRIVATE_KEY)
    gateway = LedgerGateway(config)
    assert gateway.signer_address == DEPLOYER
    assert gateway.contract.address == CONTRACT


def test_call_returns_value():
    gateway, _ = make_gateway()
    contract_function(gateway, 'ownerOf').call.return_value = ALICE

    assert gateway.call('ownerOf', 1) == ALICE
    gateway.contract.functions.ownerOf.assert_called_once_with(1)


@pytest.mark.parametrize('error', [
    ContractLogicError('execution reverted: ERC721: invalid token ID'),
    BadFunctionCallOutput('Could not decode contract function call'),
])
def test_call_maps_contract_rejection(error):
    gateway, _ = make_gateway()
    contract_function(gateway, 'ownerOf').call.side_effect = error

    with pytest.raises(LedgerCallReverted) as excinfo:
        gateway.call('ownerOf', 1)
    assert excinfo.value.__cause__ is error


def test_call_maps_transport_failure():
    gateway, _ = make_gateway()
    contract_function(gateway, 'totalSupply').call.side_effect = requests.ConnectionError('refused')

    with pytest.raises(LedgerUnavailable):
        gateway.call('totalSupply')


def test_submit_requires_signer():
    gateway, _ = make_gateway()
    with pytest.raises(ConfigurationError):
        gateway.submit('mint', ALICE, '{}')


def test_submit_signs_and_sends():
    gateway, web3 = make_gateway(PRIVATE_KEY)
    account = web3.eth.account.from_key.return_value
    account.address = DEPLOYER
    web3.eth.get_transaction_count.return_value = 7
    web3.eth.send_raw_transaction.return_value = TX
    fn = contract_function(gateway, 'safeMint')
    fn.build_transaction.return_value = {'to': CONTRACT, 'data': '0x'}

    tx_hash = gateway.submit('safeMint', ALICE, '{}')

    assert tx_hash == '0x' + 'ab' * 32
    fn.build_transaction.assert_called_once_with({'from': DEPLOYER, 'nonce': 7})
    web3.eth.get_transaction_count.assert_called_once_with(DEPLOYER, 'pending')
    account.sign_transaction.assert_called_once_with({'to': CONTRACT, 'data': '0x'})
    web3.eth.send_raw_transaction.assert_called_once_with(account.sign_transaction.return_value.raw_transaction)


def test_submit_rejected_at_estimation():
    gateway, web3 = make_gateway(PRIVATE_KEY)
    contract_function(gateway, 'mint').build_transaction.side_effect = ContractLogicError('execution reverted')

    with pytest.raises(LedgerCallReverted):
        gateway.submit('mint', ALICE, '{}')
    web3.eth.send_raw_transaction.assert_not_called()


def test_invalid_key_is_configuration_error():
    web3 = MagicMock()
    web3.eth.account.from_key.side_effect = ValueError('bad key')
    config = Configuration(contract_address=CONTRACT, endpoint_url='http://localhost:8545',
                           signing_credential=PRIVATE_KEY)
    with pytest.raises(ConfigurationError):
        LedgerGateway(config, web3=web3)


def test_get_receipt_pending_is_none():
    gateway, web3 = make_gateway()
    web3.eth.get_transaction_receipt.side_effect = TransactionNotFound('not found')
    assert gateway.get_receipt('0x01') is None


def test_get_receipt_rpc_error_is_unavailable():
    gateway, web3 = make_gateway()
    web3.eth.get_transaction_receipt.side_effect = requests.Timeout('slow')
    with pytest.raises(LedgerUnavailable):
        gateway.get_receipt('0x01')


def test_get_receipt_returns_receipt():
    gateway, web3 = make_gateway()
    web3.eth.get_transaction_receipt.return_value = {'status': 1, 'blockNumber': 5}
    assert gateway.get_receipt('0x01') == {'status': 1, 'blockNumber': 5}


def test_transfer_token_ids_puts_mints_first_and_filters_contract():
    gateway, _ = make_gateway()
    other_contract = '0x' + '99' * 20
    gateway.contract.events.Transfer.return_value.process_receipt.return_value = [
        {'address': CONTRACT, 'args': {'from': ALICE, 'to': DEPLOYER, 'tokenId': 3}},
        {'address': other_contract, 'args': {'from': ZERO_ADDRESS, 'to': ALICE, 'tokenId': 8}},
        {'address': CONTRACT, 'args': {'from': ZERO_ADDRESS, 'to': ALICE, 'tokenId': 12}},
    ]

    assert gateway.transfer_token_ids({'logs': []}) == [12, 3]
