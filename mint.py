import json
import logging
import re
import time
from collections.abc import Mapping
from urllib.parse import urlparse

import requests
from web3 import Web3

from config_resolver import resolve_config
from errors import (
    LedgerError,
    MintEntryPointNotFound,
    ValidationError,
)
from ledger_gateway import LedgerGateway, checksum
from metadata_codec import encode_metadata
from transaction_tracker import wait_for_confirmation

logger = logging.getLogger(__name__)

# Tried in order until one is accepted by the contract.
MINT_ENTRY_POINTS = ('mint', 'safeMint', 'mintWithMetadata')

IMAGE_SCHEMES = ('http', 'https', 'ipfs', 'ar')
IMAGE_EXTENSION = re.compile(r'\.(jpg|jpeg|png|gif|webp|svg)(\?.*)?$', re.IGNORECASE)
PROBE_TIMEOUT = 10


def validate_image_reference(image_reference):
    if not image_reference or not isinstance(image_reference, str):
        raise ValidationError('Image URL is required')
    if image_reference.startswith('data:'):
        if not image_reference.startswith('data:image/'):
            logger.warning('Data URI does not declare an image media type')
        return
    parsed = urlparse(image_reference)
    if parsed.scheme not in IMAGE_SCHEMES or not (parsed.netloc or parsed.path):
        raise ValidationError('Image reference must be a URL or a data URI')
    if not IMAGE_EXTENSION.search(parsed.path):
        logger.warning('Image URL does not appear to be an image file')


def probe_image_url(image_reference):
    """HEAD the image URL and reject it if it answers with a non-image type."""
    if not image_reference.startswith(('http://', 'https://')):
        return
    try:
        response = requests.head(image_reference, timeout=PROBE_TIMEOUT, allow_redirects=True)
    except requests.RequestException as e:
        logger.warning(f'Could not probe image URL {image_reference}: {e}')
        return
    if not response.ok:
        logger.warning(f'Image URL probe returned HTTP {response.status_code}')
        return
    content_type = response.headers.get('content-type', '')
    if not content_type.startswith('image/'):
        raise ValidationError('URL does not point to an image')


def validate_mint_request(destination_address, image_reference, traits, probe_image=False):
    if not destination_address or not Web3.is_address(destination_address):
        raise ValidationError('Invalid destination address')
    validate_image_reference(image_reference)
    if not isinstance(traits, Mapping):
        raise ValidationError('Traits must be a valid object')
    if not all(isinstance(key, str) for key in traits):
        raise ValidationError('Trait names must be strings')
    try:
        json.dumps(dict(traits))
    except (TypeError, ValueError) as e:
        raise ValidationError(f'Traits must be JSON values: {e}')
    if probe_image:
        probe_image_url(image_reference)
    logger.info('Note: ensure your image is exactly 512x512 pixels')


def submit_mint(gateway, destination_address, metadata, entry_points=MINT_ENTRY_POINTS):
    """Submit through the first entry point the contract accepts."""
    last_error = None
    for entry_point in entry_points:
        try:
            tx_hash = gateway.submit(entry_point, checksum(destination_address), metadata)
        except LedgerError as e:
            logger.warning(f'{entry_point} not accepted: {e}')
            last_error = e
            continue
        logger.info(f'Submitted {entry_point}, transaction hash: {tx_hash}')
        return entry_point, tx_hash
    raise MintEntryPointNotFound(entry_points, last_error) from last_error


def resolve_token_id(gateway, receipt, supply_fallback=True):
    """
    Token id assigned by a confirmed mint, or None if it cannot be told.

    The Transfer event is authoritative. The totalSupply fallback assumes no
    other mint landed in between and is only used when enabled.
    """
    try:
        token_ids = gateway.transfer_token_ids(receipt)
    except (LedgerError, ValueError, KeyError) as e:
        logger.warning(f'Could not parse Transfer events: {e}')
        token_ids = []
    if token_ids:
        return token_ids[0]

    if not supply_fallback:
        return None
    try:
        total_supply = gateway.call('totalSupply')
    except LedgerError as e:
        logger.warning(f'Token id unknown, totalSupply unavailable: {e}')
        return None
    logger.warning('No Transfer event in receipt, token id taken from totalSupply')
    return int(total_supply) - 1


def mint(destination_address, image_reference, traits, config=None, store=None,
         gateway_factory=LedgerGateway, entry_points=MINT_ENTRY_POINTS,
         probe_image=False, sleep=time.sleep):
    """
    Mint a game item to destination_address.

    traits is stored alongside name, description and image in the token
    metadata. config may override contractAddress, privateKey, rpcUrl and the
    confirmation settings; anything missing comes from the persisted defaults.

    Raises ValidationError, ConfigurationError, MintEntryPointNotFound,
    ConfirmationTimeout or TransactionReverted.
    """
    state = 'validating'
    try:
        validate_mint_request(destination_address, image_reference, traits, probe_image)
        settings = resolve_config(config, store, require_signer=True)
        gateway = gateway_factory(settings)

        state = 'submitting'
        logger.info(f'Minting NFT to {destination_address}...')
        logger.info(f'Contract: {settings.contract_address}')
        metadata = encode_metadata(traits, image_reference, settings.metadata_encoding)
        entry_point, tx_hash = submit_mint(gateway, destination_address, metadata, entry_points)

        state = 'awaiting_confirmation'
        logger.info('Waiting for confirmation...')
        record = wait_for_confirmation(
            gateway, tx_hash, settings.confirmation_attempts, settings.poll_interval, sleep=sleep)

        state = 'resolved'
        token_id = resolve_token_id(gateway, record.receipt, settings.supply_fallback)
    except Exception as e:
        logger.error(f'Minting error ({state}): {e}')
        raise

    logger.info(f'Minted token {token_id} in block {record.receipt["blockNumber"]}')
    return {
        'success': True,
        'transactionHash': tx_hash,
        'blockNumber': record.receipt['blockNumber'],
        'tokenId': token_id,
        'destinationAddress': destination_address,
        'imageUrl': image_reference,
        'traits': dict(traits),
        'contractAddress': settings.contract_address,
        'entryPoint': entry_point,
    }
