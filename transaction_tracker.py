import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from errors import ConfirmationTimeout, LedgerUnavailable, TransactionReverted

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationRecord:
    tx_hash: str
    attempts: int = 0
    receipt: Optional[Any] = None

    @property
    def status(self):
        if self.receipt is None:
            return 'submitted'
        return 'confirmed' if self.receipt['status'] == 1 else 'failed'


def wait_for_confirmation(gateway, tx_hash, max_attempts, poll_interval, sleep=time.sleep):
    """
    Poll for the receipt of tx_hash until one shows up or the attempt budget
    runs out.

    A missing receipt means the transaction is still pending. RPC errors while
    polling are logged and polling goes on. Raises ConfirmationTimeout when no
    receipt was seen (the transaction may still be mined later) and
    TransactionReverted when the receipt reports failure.
    """
    record = ConfirmationRecord(tx_hash)
    while record.attempts < max_attempts:
        record.attempts += 1
        try:
            record.receipt = gateway.get_receipt(tx_hash)
        except LedgerUnavailable as e:
            logger.warning(f'Receipt poll {record.attempts}/{max_attempts} for {tx_hash} failed: {e}')

        if record.receipt is not None:
            break
        if record.attempts < max_attempts:
            sleep(poll_interval)

    if record.receipt is None:
        logger.error(f'No receipt for {tx_hash} after {record.attempts} attempts')
        raise ConfirmationTimeout(tx_hash, record.attempts)

    if record.status == 'failed':
        logger.error(f'Transaction {tx_hash} failed on chain')
        raise TransactionReverted(tx_hash, record.receipt)

    logger.info(f'Transaction {tx_hash} confirmed in block {record.receipt["blockNumber"]} '
                f'after {record.attempts} attempt(s)')
    return record
