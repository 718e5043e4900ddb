from .auth import User, SessionToken
from .catalog import Product, Customer, PriceList, ProductPrice
from .sales import Sale, SaleLine
from .credit_notes import CreditNote, CreditNoteLine
from .registers import CashSession, Expense
from .fiscal import FiscalSettings, SigningCertificate, SubscriptionState, DocumentSequence
from .notifications import QueuedNotification

__all__ = [
    'User', 'SessionToken',
    'Product', 'Customer', 'PriceList', 'ProductPrice',
    'Sale', 'SaleLine',
    'CreditNote', 'CreditNoteLine',
    'CashSession', 'Expense',
    'FiscalSettings', 'SigningCertificate', 'SubscriptionState', 'DocumentSequence',
    'QueuedNotification',
]
