"""
Exceptions raised by the token-lifecycle client.

Every error carries an ``http_status`` so the Flask layer can turn it into a
response without knowing the individual classes.
"""


class NFTServiceError(Exception):
    http_status = 500
    title = 'Internal Server Error'


class ValidationError(NFTServiceError):
    http_status = 400
    title = 'Bad Request'


class ConfigurationError(NFTServiceError):
    http_status = 500
    title = 'Server configuration error'


class LedgerError(NFTServiceError):
    http_status = 502
    title = 'Ledger Error'


class LedgerUnavailable(LedgerError):
    """The RPC endpoint could not be reached or answered with an error."""
    http_status = 503
    title = 'Ledger Unavailable'


class LedgerCallReverted(LedgerError):
    """The call executed but the contract rejected it."""


class MintEntryPointNotFound(NFTServiceError):
    http_status = 502
    title = 'Mint Failed'

    def __init__(self, tried, last_error):
        self.tried = tuple(tried)
        self.last_error = last_error
        super().__init__(
            f'Minting failed. Tried {", ".join(self.tried)}. '
            f'Last error: {last_error}'
        )


class ConfirmationTimeout(NFTServiceError):
    """The write was accepted but no receipt was seen. The outcome is unknown."""
    http_status = 202
    title = 'Pending'

    def __init__(self, tx_hash, attempts):
        self.tx_hash = tx_hash
        self.attempts = attempts
        super().__init__(
            f'Transaction {tx_hash} not confirmed after {attempts} attempts; '
            f'it may still be mined'
        )


class TransactionReverted(NFTServiceError):
    http_status = 502
    title = 'Transaction Reverted'

    def __init__(self, tx_hash, receipt=None):
        self.tx_hash = tx_hash
        self.receipt = receipt
        super().__init__(f'Transaction {tx_hash} failed on chain')


class TokenNotFound(NFTServiceError):
    http_status = 404
    title = 'Not Found'

    def __init__(self, token_id):
        self.token_id = token_id
        super().__init__(f'Token ID {token_id} does not exist or has been burned')
