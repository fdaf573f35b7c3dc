"""
Encoding of item metadata for storage on the token, and best-effort decoding
of whatever a token's URI turns out to hold.
"""
import base64
import binascii
import json
import logging
from urllib.parse import unquote

logger = logging.getLogger(__name__)

DEFAULT_ITEM_NAME = 'Game Item'
DATA_URI_PREFIX = 'data:application/json'
LOCATOR_SCHEMES = ('http://', 'https://', 'ipfs://', 'ar://')


def build_metadata(traits, image):
    return {
        'name': traits.get('name') or DEFAULT_ITEM_NAME,
        'description': traits.get('description') or '',
        'image': image,
        'traits': dict(traits),
    }


def encode_metadata(traits, image, encoding='json'):
    """Serialize metadata as a compact JSON literal or a base64 JSON data URI."""
    metadata_json = json.dumps(build_metadata(traits, image), separators=(',', ':'), ensure_ascii=False)
    if encoding == 'data-uri':
        payload = base64.b64encode(metadata_json.encode('utf-8')).decode('ascii')
        return f'{DATA_URI_PREFIX};base64,{payload}'
    if encoding != 'json':
        raise ValueError(f'Unknown metadata encoding: {encoding}')
    return metadata_json


def _parse_object(text):
    metadata = json.loads(text)
    if not isinstance(metadata, dict):
        raise ValueError(f'expected a JSON object, got {type(metadata).__name__}')
    return metadata


def _decode_data_uri(raw):
    header, sep, payload = raw.partition(',')
    if not sep:
        raise ValueError('data URI has no payload')
    if header.endswith(';base64'):
        text = base64.b64decode(payload, validate=True).decode('utf-8')
    else:
        text = unquote(payload)
    return _parse_object(text)


def decode_metadata(raw):
    """
    Decode a token URI into (metadata, error).

    Recognized formats are tried in order: JSON data URI, JSON literal,
    external locator, anything else. A format that was recognized but could
    not be parsed gives (None, error); unrecognized input is wrapped as
    {'raw': ...}. Never raises.
    """
    if not isinstance(raw, str):
        return {'raw': raw}, None

    if raw.startswith(DATA_URI_PREFIX):
        try:
            return _decode_data_uri(raw), None
        except (ValueError, binascii.Error, UnicodeDecodeError) as e:
            logger.warning(f'Could not decode metadata data URI: {e}')
            return None, f'Invalid metadata data URI: {e}'

    if raw.lstrip().startswith('{'):
        try:
            return _parse_object(raw), None
        except ValueError as e:
            logger.warning(f'Could not parse metadata JSON: {e}')
            return None, f'Invalid metadata JSON: {e}'

    if raw.lower().startswith(LOCATOR_SCHEMES):
        return {'uri': raw}, None

    return {'raw': raw}, None


def token_view(token_id, metadata, error=None):
    """Flatten decoded metadata into the item shape returned to callers."""
    metadata_fields = metadata or {}
    traits = metadata_fields.get('traits')
    view = {
        'tokenId': token_id,
        'metadata': metadata,
        'traits': traits if isinstance(traits, dict) else {},
        'name': metadata_fields.get('name') or f'Item #{token_id}',
        'description': metadata_fields.get('description') or '',
        'image': metadata_fields.get('image') or '',
    }
    if error is not None:
        view['error'] = error
    return view
