from .stations import Station, Product, Tank, Nozzle
from .owners import Owner
from .transactions import SaleTransaction
from .billing import Invoice, InvoicePayment
from .shifts import Shift, ShiftReading
from .inventory import InventoryItem, InventoryAdjustment
from .anomalies import Anomaly
from .audit import AuditEvent

__all__ = [
    'Station', 'Product', 'Tank', 'Nozzle',
    'Owner',
    'SaleTransaction',
    'Invoice', 'InvoicePayment',
    'Shift', 'ShiftReading',
    'InventoryItem', 'InventoryAdjustment',
    'Anomaly',
    'AuditEvent',
]
