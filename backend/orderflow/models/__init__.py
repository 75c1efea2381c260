from .orders import Order
from .traces import CheckoutTrace, CheckoutFailure
from .dispatch import (
    Recipient, Sequence, SequenceStep, DispatchJob, DispatchJobLine, LegacyJob, PayoutLedgerEntry,
)

__all__ = [
    'Order',
    'CheckoutTrace', 'CheckoutFailure',
    'Recipient', 'Sequence', 'SequenceStep', 'DispatchJob', 'DispatchJobLine', 'LegacyJob',
    'PayoutLedgerEntry',
]
