from .orders import Order, Garment, GarmentService, GarmentHistory
from .billing import Invoice, Payment, Refund

__all__ = [
    'Order', 'Garment', 'GarmentService', 'GarmentHistory',
    'Invoice', 'Payment', 'Refund',
]
