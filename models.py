from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()


def utcnow():
    return datetime.now(timezone.utc)


class MintLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    wallet_address = db.Column(db.String(128))
    destination_address = db.Column(db.String(128))
    image_url = db.Column(db.Text)
    token_id = db.Column(db.String(78))
    transaction_hash = db.Column(db.String(66))
    block_number = db.Column(db.Integer)
    success = db.Column(db.Boolean, nullable=False)
    error_message = db.Column(db.Text, default='')


class RetrieveLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    wallet_address = db.Column(db.String(128))
    items_count = db.Column(db.Integer, default=0)
    success = db.Column(db.Boolean, nullable=False)
    error_message = db.Column(db.Text, default='')
