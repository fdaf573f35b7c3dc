"""
Audit trail of mint and retrieve requests, kept in the service database and
exportable in the CSV layout the operators already consume.
"""
import csv
import io
import logging
import os

from sqlalchemy.exc import SQLAlchemyError

from models import MintLog, RetrieveLog, db

logger = logging.getLogger(__name__)

MINT_COLUMNS = ('timestamp', 'wallet_address', 'destination_address', 'image_url', 'token_id',
                'transaction_hash', 'block_number', 'success', 'error_message')
RETRIEVE_COLUMNS = ('timestamp', 'wallet_address', 'items_count', 'success', 'error_message')
LOG_KINDS = {
    'mint': (MintLog, MINT_COLUMNS),
    'retrieve': (RetrieveLog, RETRIEVE_COLUMNS),
}


def storage_path():
    """NFT_STORAGE_PATH, else /storage when mounted, else ./storage next to the app."""
    configured = os.getenv('NFT_STORAGE_PATH')
    if configured:
        return configured
    if os.path.exists('/storage'):
        return '/storage'
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'storage')


def _sanitize(message):
    return (message or '').replace('\n', ' ')


def _save(entry):
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        # the audit trail must never fail the request it describes
        logger.error(f'[LOGGER] Error writing {entry.__tablename__}: {e}')


def log_mint(wallet_address, destination_address, image_url, token_id, transaction_hash,
             block_number, success, error_message=''):
    _save(MintLog(
        wallet_address=wallet_address or '',
        destination_address=destination_address or '',
        image_url=image_url or '',
        token_id=str(token_id) if token_id is not None else '',
        transaction_hash=transaction_hash or '',
        block_number=block_number,
        success=bool(success),
        error_message=_sanitize(error_message),
    ))


def log_retrieve(wallet_address, items_count, success, error_message=''):
    _save(RetrieveLog(
        wallet_address=wallet_address or '',
        items_count=items_count or 0,
        success=bool(success),
        error_message=_sanitize(error_message),
    ))


def _csv_value(entry, column):
    value = getattr(entry, column)
    if column == 'timestamp':
        return value.isoformat()
    if column == 'success':
        return 'true' if value else 'false'
    return '' if value is None else value


def export_csv(kind):
    model, columns = LOG_KINDS[kind]
    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator='\n')
    out.write(','.join(columns) + '\n')
    for entry in db.session.execute(db.select(model).order_by(model.id)).scalars():
        writer.writerow([_csv_value(entry, column) for column in columns])
    return out.getvalue()
