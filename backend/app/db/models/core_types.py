import enum


class POStatus(str, enum.Enum):
    pending = "Pending"
    approved = "Approved"
    received = "Received"
    cancelled = "Cancelled"


class MovementKind(str, enum.Enum):
    receipt = "RECEIPT"
    release = "RELEASE"
    adjustment = "ADJUSTMENT"


class AdjustmentType(str, enum.Enum):
    correction = "Correction"
    disposal = "Disposal"
    return_ = "Return"


class ExpiryStatus(str, enum.Enum):
    expired = "expired"
    expiring_soon = "expiring-soon"
    good = "good"
    no_expiry = "no-expiry"
