import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = 'https://polygon-rpc.com/'
DEFAULT_CONFIRMATION_ATTEMPTS = 60
DEFAULT_POLL_INTERVAL = 5.0
METADATA_ENCODINGS = ('json', 'data-uri')
TRUTHY = ('true', '1', 'yes')
FALSY = ('false', '0', 'no')


@dataclass(frozen=True)
class Configuration:
    contract_address: str
    endpoint_url: str
    signing_credential: Optional[str] = None
    confirmation_attempts: int = DEFAULT_CONFIRMATION_ATTEMPTS
    poll_interval: float = DEFAULT_POLL_INTERVAL
    metadata_encoding: str = 'json'
    supply_fallback: bool = True

    def __repr__(self):
        # keep the credential out of logs
        return (f'Configuration(contract_address={self.contract_address!r}, '
                f'endpoint_url={self.endpoint_url!r}, '
                f'signer={"yes" if self.signing_credential else "no"})')


class FileConfigStore:
    """
    Read-only view of the persisted defaults: deployment.json written by the
    deploy script and the signing key file.
    """

    def __init__(self, deployment_path=None, private_key_path=None):
        self.deployment_path = deployment_path or os.getenv('NFT_DEPLOYMENT_FILE', 'deployment.json')
        self.private_key_path = private_key_path or os.getenv('NFT_PRIVATE_KEY_FILE', 'polygon_private_key.txt')

    def load_deployment(self):
        try:
            with open(self.deployment_path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            raise ConfigurationError(f'Could not read {self.deployment_path}: {e}') from e
        if not isinstance(data, dict):
            raise ConfigurationError(f'{self.deployment_path} must contain a JSON object')
        return data

    def load_private_key(self):
        try:
            with open(self.private_key_path, 'r') as f:
                key = f.read().strip()
        except FileNotFoundError:
            key = os.getenv('POLYGON_PRIVATE_KEY', '').strip()
        if key and not key.startswith('0x'):
            key = '0x' + key
        return key or None

    def contract_address(self):
        return self.load_deployment().get('contractAddress')

    def owner_address(self):
        return self.load_deployment().get('ownerAddress') or 'unknown'


def default_store():
    return FileConfigStore()


def _is_private_key(value):
    if not isinstance(value, str) or not value.startswith('0x'):
        return False
    try:
        return len(bytes.fromhex(value[2:])) == 32
    except ValueError:
        return False


def _number(value, name, cast, minimum):
    if isinstance(value, bool):
        raise ConfigurationError(f'{name} must be a number')
    if cast is int and isinstance(value, float) and not value.is_integer():
        raise ConfigurationError(f'{name} must be a whole number')
    try:
        value = cast(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f'{name} must be a number')
    if value < minimum:
        raise ConfigurationError(f'{name} must be at least {minimum}')
    return value


def _flag(value, name, default):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in TRUTHY + FALSY:
        return value.strip().lower() in TRUTHY
    raise ConfigurationError(f'{name} must be true or false')


def resolve_config(override=None, store=None, require_signer=False):
    """
    Build the Configuration for a single call.

    Explicit override fields win over the persisted store, which wins over
    built-in defaults. Nothing is cached between calls.
    """
    override = dict(override or {})
    store = store or default_store()

    contract_address = override.get('contractAddress')
    if not contract_address:
        contract_address = store.contract_address()
        if not contract_address:
            raise ConfigurationError('Contract address not provided and deployment.json not found')
    if not Web3.is_address(contract_address):
        raise ConfigurationError('Invalid contract address')

    endpoint_url = override.get('rpcUrl') or os.getenv('POLYGON_RPC_URL') or DEFAULT_RPC_URL

    signing_credential = None
    if require_signer:
        signing_credential = override.get('privateKey') or store.load_private_key()
        if not signing_credential:
            raise ConfigurationError('Private key not provided and polygon_private_key.txt not found')
        if not _is_private_key(signing_credential):
            raise ConfigurationError('Invalid private key format')

    metadata_encoding = override.get('metadataEncoding', 'json')
    if metadata_encoding not in METADATA_ENCODINGS:
        raise ConfigurationError(f'metadataEncoding must be one of {", ".join(METADATA_ENCODINGS)}')

    config = Configuration(
        contract_address=Web3.to_checksum_address(contract_address),
        endpoint_url=endpoint_url,
        signing_credential=signing_credential,
        confirmation_attempts=_number(
            override.get('confirmationAttempts', DEFAULT_CONFIRMATION_ATTEMPTS), 'confirmationAttempts', int, 1),
        poll_interval=_number(override.get('pollInterval', DEFAULT_POLL_INTERVAL), 'pollInterval', float, 0),
        metadata_encoding=metadata_encoding,
        supply_fallback=_flag(override.get('tokenIdSupplyFallback'), 'tokenIdSupplyFallback', True),
    )
    logger.debug(f'Resolved {config!r}')
    return config
