from .tenancy import Company
from .inventory import InventoryItem, RepairEntry, BankPayment, InstallmentPayment, StatusLog
from .documents import ChangeRecord, ReturnRecord
from .daily_stock import DailyStockSession

__all__ = [
    'Company',
    'InventoryItem', 'RepairEntry', 'BankPayment', 'InstallmentPayment', 'StatusLog',
    'ChangeRecord', 'ReturnRecord',
    'DailyStockSession',
]
