"""
Ownership queries: which items an address holds, a single item's owner and
metadata, and whether an address owns a given item.
"""
import logging

from web3 import Web3

from config_resolver import resolve_config
from errors import LedgerError, TokenNotFound, ValidationError
from ledger_gateway import LedgerGateway, checksum
from metadata_codec import decode_metadata, token_view

logger = logging.getLogger(__name__)


def validate_wallet_address(address):
    if not address or not Web3.is_address(address):
        raise ValidationError('Invalid wallet address')


def normalize_token_id(token_id):
    if token_id is None or token_id == '':
        raise ValidationError('Token ID is required')
    if isinstance(token_id, bool):
        raise ValidationError('Token ID must be a valid number')
    if isinstance(token_id, str):
        token_id = token_id.strip()
        if not token_id.isdigit():
            raise ValidationError('Token ID must be a valid number')
    elif isinstance(token_id, float) and not token_id.is_integer():
        raise ValidationError('Token ID must be a valid number')
    try:
        token_id = int(token_id)
    except (TypeError, ValueError):
        raise ValidationError('Token ID must be a valid number')
    if token_id < 0:
        raise ValidationError('Token ID must be a valid number')
    return token_id


def same_address(a, b):
    return str(a).lower() == str(b).lower()


def indexed_token_ids(gateway, address):
    """
    Token ids via balanceOf/tokenOfOwnerByIndex, in contract order.

    Returns None when the enumerable extension is unusable; a partially read
    list is never returned.
    """
    try:
        balance = int(gateway.call('balanceOf', checksum(address)))
    except LedgerError as e:
        logger.warning(f'Error getting balance, trying alternative method: {e}')
        return None

    logger.info(f'Found {balance} item(s)')
    token_ids = []
    for index in range(balance):
        try:
            token_ids.append(int(gateway.call('tokenOfOwnerByIndex', checksum(address), index)))
        except LedgerError as e:
            logger.warning(f'Enumerable extension not available ({e}), scanning all tokens...')
            return None
    return token_ids


def scanned_token_ids(gateway, address):
    """Token ids 1..totalSupply whose current owner is address, ascending."""
    total = int(gateway.call('totalSupply'))
    logger.info(f'Scanning {total} total tokens...')

    token_ids = []
    for token_id in range(1, total + 1):
        try:
            owner = gateway.call('ownerOf', token_id)
        except LedgerError:
            # burned or never minted
            continue
        if same_address(owner, address):
            token_ids.append(token_id)
    logger.info(f'Found {len(token_ids)} item(s) owned by address')
    return token_ids


def read_token_view(gateway, token_id):
    try:
        token_uri = gateway.call('tokenURI', token_id)
    except LedgerError as e:
        logger.warning(f'Could not retrieve metadata for token {token_id}: {e}')
        return token_view(token_id, None, str(e))
    metadata, error = decode_metadata(token_uri)
    return token_view(token_id, metadata, error)


def list_owned_tokens(address, config=None, store=None, gateway_factory=LedgerGateway):
    """
    All items held by address, each with decoded metadata.

    Uses the enumerable extension when it works and falls back to scanning
    every token. A token whose metadata cannot be read is still listed, with
    metadata None and an error message.
    """
    validate_wallet_address(address)
    settings = resolve_config(config, store)
    gateway = gateway_factory(settings)

    logger.info(f'Retrieving items for {address}...')
    logger.info(f'Contract: {settings.contract_address}')

    token_ids = indexed_token_ids(gateway, address)
    if token_ids is None:
        token_ids = scanned_token_ids(gateway, address)

    items = [read_token_view(gateway, token_id) for token_id in token_ids]
    logger.info(f'Retrieved {len(items)} item(s)')
    return items


def read_owner(gateway, token_id):
    try:
        return gateway.call('ownerOf', token_id)
    except LedgerError as e:
        raise TokenNotFound(token_id) from e


def get_token(token_id, config=None, store=None, gateway_factory=LedgerGateway):
    token_id = normalize_token_id(token_id)
    settings = resolve_config(config, store)
    gateway = gateway_factory(settings)

    logger.info(f'Looking up token ID {token_id} from contract {settings.contract_address}...')
    owner = read_owner(gateway, token_id)

    item = read_token_view(gateway, token_id)
    item['owner'] = owner
    item['contractAddress'] = settings.contract_address
    return item


def verify_ownership(address, token_id, config=None, store=None, gateway_factory=LedgerGateway):
    validate_wallet_address(address)
    token_id = normalize_token_id(token_id)
    settings = resolve_config(config, store)
    gateway = gateway_factory(settings)

    logger.info(f'Verifying ownership of token {token_id} for {address}...')
    actual_owner = read_owner(gateway, token_id)
    is_owner = same_address(address, actual_owner)
    logger.info(f'Actual owner: {actual_owner} ({"owner verified" if is_owner else "not the owner"})')

    return {
        'isOwner': is_owner,
        'walletAddress': address,
        'actualOwner': actual_owner,
        'tokenId': token_id,
        'contractAddress': settings.contract_address,
    }
