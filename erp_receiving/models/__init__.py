"""Import every model so Base.metadata knows all tables."""
from erp_receiving.models.vendor import Vendor
from erp_receiving.models.purchase import (
    PurchaseOrder,
    GoodsReceiptNote,
    POStatus,
    GRNStatus,
    VerificationStatus,
    ExcessAction,
)
from erp_receiving.models.approval import (
    Approval,
    ApprovalEntityType,
    ApprovalStageKey,
    ApprovalStatus,
)
from erp_receiving.models.vendor_return import (
    VendorReturn,
    VendorRequest,
    ReturnType,
    VendorReturnStatus,
    ResolutionType,
    VendorRequestType,
    VendorRequestStatus,
)
from erp_receiving.models.inventory import (
    Product,
    Inventory,
    InventoryMovement,
    ProductCategory,
    MovementType,
)
from erp_receiving.models.notifications import (
    Notification,
    NotificationType,
    NotificationPriority,
)
from erp_receiving.models.document_sequence import DocumentSequence, DocumentPrefix
from erp_receiving.models.grn_mismatch_request import (
    GRNMismatchRequest,
    MismatchType,
    MismatchRequestedAction,
    MismatchRequestStatus,
)

__all__ = [
    "Vendor",
    "PurchaseOrder",
    "GoodsReceiptNote",
    "POStatus",
    "GRNStatus",
    "VerificationStatus",
    "ExcessAction",
    "Approval",
    "ApprovalEntityType",
    "ApprovalStageKey",
    "ApprovalStatus",
    "VendorReturn",
    "VendorRequest",
    "ReturnType",
    "VendorReturnStatus",
    "ResolutionType",
    "VendorRequestType",
    "VendorRequestStatus",
    "Product",
    "Inventory",
    "InventoryMovement",
    "ProductCategory",
    "MovementType",
    "Notification",
    "NotificationType",
    "NotificationPriority",
    "DocumentSequence",
    "DocumentPrefix",
    "GRNMismatchRequest",
    "MismatchType",
    "MismatchRequestedAction",
    "MismatchRequestStatus",
]
