from enum import Enum

class Role(Enum):
    ADMIN = 'admin'
    SPECIALIST = 'specialist'
    RECEPTIONIST = 'receptionist'

class AppointmentStatus(Enum):
    SCHEDULED = 'scheduled'
    IN_PROGRESS = 'in_progress'
    PAUSED = 'paused'
    COMPLETED = 'completed'

class ProductCategory(Enum):
    LENS = 'lens'
    FRAME = 'frame'
    CONTACT_LENS = 'contact_lens'
    ACCESSORY = 'accessory'
    SERVICE = 'service'

class DiscountRequestStatus(Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'

class QuoteStatus(Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    EXPIRED = 'expired'
    CONVERTED = 'converted'

class OrderStatus(Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    ON_HOLD = 'on_hold'

# Shared by Sale.payment_status and Order.payment_status
class PaymentStatus(Enum):
    PENDING = 'pending'
    PARTIAL = 'partial'
    PAID = 'paid'

class SaleStatus(Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    REFUNDED = 'refunded'

class LaboratoryStatus(Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'

class LaboratoryOrderStatus(Enum):
    PENDING = 'pending'
    IN_PROCESS = 'in_process'
    SENT_TO_LAB = 'sent_to_lab'
    READY_FOR_DELIVERY = 'ready_for_delivery'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'

class LaboratoryOrderPriority(Enum):
    LOW = 'low'
    NORMAL = 'normal'
    HIGH = 'high'
    URGENT = 'urgent'
