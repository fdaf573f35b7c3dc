import base64
import hmac
import io
import json
import logging
import os
import re
from functools import wraps

from flask import Blueprint, Flask, Response, current_app, jsonify, request
from PIL import Image
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from audit_log import LOG_KINDS, export_csv, log_mint, log_retrieve, storage_path
from config_resolver import FileConfigStore
from errors import ConfigurationError, ConfirmationTimeout, NFTServiceError, ValidationError
from ledger_gateway import LedgerGateway
from mint import mint
from models import db
from ownership import get_token, list_owned_tokens, verify_ownership

ALLOWED_IMAGE_TYPES = re.compile(r'jpeg|jpg|png|gif|webp|svg')
MAX_UPLOAD_BYTES = 5 * 1024 * 1024
EXPECTED_IMAGE_SIZE = (512, 512)
LOG_TAGS = {
    'api.mint_item': 'MINT',
    'api.retrieve_items': 'RETRIEVE',
    'api.retrieve_items_post': 'RETRIEVE',
    'api.get_item': 'GET_ITEM',
    'api.get_item_post': 'GET_ITEM',
    'api.verify_owner': 'VERIFY_OWNER',
    'api.verify_owner_post': 'VERIFY_OWNER',
}

api = Blueprint('api', __name__)


def _read_endpoint_key():
    key = current_app.config.get('ENDPOINT_KEY')
    if key:
        return key
    with open(current_app.config['ENDPOINT_KEY_FILE'], 'r') as f:
        return f.read().strip()


def _params():
    """Request fields from a JSON body or a form (multipart uploads)."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def authenticate(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        provided_key = (request.headers.get('X-API-Key')
                        or _params().get('apiKey')
                        or request.args.get('apiKey'))
        if not provided_key:
            return jsonify({
                'error': 'Unauthorized',
                'message': 'API key is required. Include it in X-API-Key header, or as apiKey in body/query.'
            }), 401

        try:
            endpoint_key = _read_endpoint_key()
        except OSError:
            current_app.logger.error('Endpoint key file not found')
            return jsonify({
                'error': 'Server configuration error',
                'message': 'Endpoint key file not found'
            }), 500

        if not hmac.compare_digest(str(provided_key).encode(), endpoint_key.encode()):
            return jsonify({'error': 'Forbidden', 'message': 'Invalid API key'}), 403

        return f(*args, **kwargs)

    return decorated_function


def _bad_request(message):
    return jsonify({'error': 'Bad Request', 'message': message}), 400


def _config_arg(config):
    # form-data sends config as a JSON string
    if isinstance(config, str):
        try:
            config = json.loads(config) if config else {}
        except ValueError:
            config = {}
    return config if isinstance(config, dict) else {}


def _query_config():
    config = {}
    for field in ('contractAddress', 'rpcUrl'):
        if request.args.get(field):
            config[field] = request.args[field]
    return config


def _core_kwargs():
    return {
        'store': current_app.config['CONFIG_STORE'],
        'gateway_factory': current_app.config['GATEWAY_FACTORY'],
    }


def _deployer_address():
    store = current_app.config['CONFIG_STORE'] or FileConfigStore()
    try:
        return store.owner_address()
    except ConfigurationError:
        return 'unknown'


def _upload_to_data_uri(image_file):
    filename = image_file.filename or ''
    extension = os.path.splitext(filename)[1].lower().lstrip('.')
    mimetype = image_file.mimetype or ''
    if not (ALLOWED_IMAGE_TYPES.search(mimetype) and ALLOWED_IMAGE_TYPES.search(extension)):
        raise ValidationError('Only image files are allowed (jpeg, jpg, png, gif, webp, svg)')

    image_bytes = image_file.read()
    if not image_bytes:
        raise ValidationError('Uploaded image is empty')

    if 'svg' not in mimetype:
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ValidationError(f'Invalid image data: {e}')
        if image.size != EXPECTED_IMAGE_SIZE:
            current_app.logger.warning(
                f'[MINT] Uploaded image is {image.size[0]}x{image.size[1]}, expected 512x512')

    current_app.logger.info(f'[MINT] Using uploaded image file: {filename} ({len(image_bytes)} bytes)')
    return f'data:{mimetype};base64,{base64.b64encode(image_bytes).decode("ascii")}'


@api.app_errorhandler(RequestEntityTooLarge)
def upload_too_large(e):
    return _bad_request('Image file too large. Maximum size is 5MB.')


@api.app_errorhandler(NFTServiceError)
def service_error(e):
    tag = LOG_TAGS.get(request.endpoint, 'API')
    if isinstance(e, ConfirmationTimeout):
        current_app.logger.warning(f'[{tag}] {e}')
        return jsonify({
            'success': False,
            'status': 'pending',
            'transactionHash': e.tx_hash,
            'message': str(e)
        }), e.http_status
    current_app.logger.error(f'[{tag}] Error: {e}')
    return jsonify({'error': e.title, 'message': str(e)}), e.http_status


@api.app_errorhandler(Exception)
def unexpected_error(e):
    if isinstance(e, HTTPException):
        return e
    tag = LOG_TAGS.get(request.endpoint, 'API')
    current_app.logger.exception(f'[{tag}] Error: {e}')
    return jsonify({'error': 'Internal Server Error', 'message': str(e)}), 500


@api.route('/health')
def health():
    return jsonify({'status': 'ok', 'service': 'Blockchain NFT API'})


@api.route('/api/mint', methods=['POST'])
@authenticate
def mint_item():
    data = _params()
    destination_address = data.get('destinationAddress')
    if not destination_address:
        return _bad_request('destinationAddress is required')

    traits = data.get('traits')
    if isinstance(traits, str):
        try:
            traits = json.loads(traits)
        except ValueError:
            return _bad_request('traits must be a valid JSON object')
    if not isinstance(traits, dict):
        return _bad_request('traits object is required')

    image_file = request.files.get('image')
    if image_file:
        image_url = _upload_to_data_uri(image_file)
    elif data.get('imageUrl'):
        image_url = data['imageUrl']
        current_app.logger.info(f'[MINT] Using image URL: {image_url}')
    else:
        return _bad_request('Either image file upload or imageUrl is required')

    current_app.logger.info(f'[MINT] Request for {destination_address}')
    wallet_address = _deployer_address()
    try:
        result = mint(destination_address, image_url, traits, _config_arg(data.get('config')),
                      probe_image=current_app.config['PROBE_IMAGE_URLS'], **_core_kwargs())
    except Exception as e:
        log_mint(wallet_address, destination_address, image_url, None,
                 getattr(e, 'tx_hash', None), None, False, str(e))
        raise

    log_mint(wallet_address, destination_address, image_url, result['tokenId'],
             result['transactionHash'], result['blockNumber'], True, '')
    return jsonify({'success': True, 'data': result})


@api.route('/api/retrieve/<wallet_address>')
@authenticate
def retrieve_items(wallet_address):
    current_app.logger.info(f'[RETRIEVE] Request for {wallet_address}')
    try:
        items = list_owned_tokens(wallet_address, _query_config(), **_core_kwargs())
    except Exception as e:
        log_retrieve(wallet_address, 0, False, str(e))
        raise

    log_retrieve(wallet_address, len(items), True, '')
    return jsonify({'success': True, 'count': len(items), 'data': items})


@api.route('/api/retrieve', methods=['POST'])
@authenticate
def retrieve_items_post():
    data = _params()
    wallet_address = data.get('walletAddress')
    if not wallet_address:
        return _bad_request('walletAddress is required')

    current_app.logger.info(f'[RETRIEVE] Request for {wallet_address}')
    items = list_owned_tokens(wallet_address, _config_arg(data.get('config')), **_core_kwargs())
    return jsonify({'success': True, 'count': len(items), 'data': items})


@api.route('/api/item/<token_id>')
@authenticate
def get_item(token_id):
    current_app.logger.info(f'[GET_ITEM] Request for token ID: {token_id}')
    item = get_token(token_id, _query_config(), **_core_kwargs())
    return jsonify({'success': True, 'data': item})


@api.route('/api/item', methods=['POST'])
@authenticate
def get_item_post():
    data = _params()
    token_id = data.get('tokenId')
    if token_id is None or token_id == '':
        return _bad_request('tokenId is required')

    current_app.logger.info(f'[GET_ITEM] Request for token ID: {token_id}')
    item = get_token(token_id, _config_arg(data.get('config')), **_core_kwargs())
    return jsonify({'success': True, 'data': item})


@api.route('/api/verify-owner/<wallet_address>/<token_id>')
@authenticate
def verify_owner(wallet_address, token_id):
    current_app.logger.info(f'[VERIFY_OWNER] Request: wallet {wallet_address}, token {token_id}')
    result = verify_ownership(wallet_address, token_id, _query_config(), **_core_kwargs())
    return jsonify({'success': True, 'data': result})


@api.route('/api/verify-owner', methods=['POST'])
@authenticate
def verify_owner_post():
    data = _params()
    wallet_address = data.get('walletAddress')
    token_id = data.get('tokenId')
    if not wallet_address or token_id is None or token_id == '':
        return _bad_request('walletAddress and tokenId are required')

    current_app.logger.info(f'[VERIFY_OWNER] Request: wallet {wallet_address}, token {token_id}')
    result = verify_ownership(wallet_address, token_id, _config_arg(data.get('config')), **_core_kwargs())
    return jsonify({'success': True, 'data': result})


@api.route('/api/logs/<kind>')
@authenticate
def download_logs(kind):
    if kind not in LOG_KINDS:
        return jsonify({'error': 'Not Found', 'message': f'Unknown log: {kind}'}), 404
    return Response(export_csv(kind), mimetype='text/csv',
                    headers={'Content-Disposition': f'attachment; filename={kind}_logs.csv'})


def create_app(test_config=None):
    app = Flask(__name__)

    storage = storage_path()
    os.makedirs(storage, exist_ok=True)
    app.config.from_mapping(
        SQLALCHEMY_DATABASE_URI=f'sqlite:///{os.path.join(storage, "audit.db")}',
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        MAX_CONTENT_LENGTH=MAX_UPLOAD_BYTES,
        ENDPOINT_KEY=os.getenv('ENDPOINT_KEY'),
        ENDPOINT_KEY_FILE=os.getenv(
            'ENDPOINT_KEY_FILE', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'endpoint_key.txt')),
        PROBE_IMAGE_URLS=True,
        GATEWAY_FACTORY=LedgerGateway,
        CONFIG_STORE=None,
    )
    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    app.register_blueprint(api)

    with app.app_context():
        db.create_all()

    return app


app = create_app()


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.environ.get('PORT', 3000))
    app.run(host='0.0.0.0', port=port, debug=debug_mode)
