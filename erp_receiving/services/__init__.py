# Services module
from erp_receiving.services.notification_service import NotificationService
from erp_receiving.services.document_sequence_service import DocumentSequenceService
from erp_receiving.services.vendor_return_service import VendorReturnService
from erp_receiving.services.approval_service import ApprovalService
from erp_receiving.services.inventory_service import InventoryService
from erp_receiving.services.grn_service import GRNService
from erp_receiving.services.purchase_order_service import PurchaseOrderService

__all__ = [
    "NotificationService",
    "DocumentSequenceService",
    "VendorReturnService",
    "ApprovalService",
    "InventoryService",
    "GRNService",
    "PurchaseOrderService",
]
