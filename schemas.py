"""
Fleet Schemas

Pydantic models for every table in the store plus the request models accepted
by the console operations. Record models validate rows coming out of the store;
request models validate operator input before anything is written.

Status enums carry the exact strings stored in the database.
"""
from datetime import date
from enum import Enum
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# =============== ENUMS ==================
class BookingStatus(str, Enum):
    ACTIVE = "Active"
    RETURNED = "Returned"
    PENDING_PAYMENT = "Pending Payment"
    PAUSED = "Paused"


class VehicleStatus(str, Enum):
    AVAILABLE = "Available"
    RENTED = "Rented"
    MAINTENANCE = "Maintenance"


class BatteryStatus(str, Enum):
    AVAILABLE = "Available"
    IN_USE = "InUse"
    CHARGING = "Charging"
    MAINTENANCE = "Maintenance"


class HealthStatus(str, Enum):
    GOOD = "Good"
    ATTENTION = "Attention"
    CRITICAL = "Critical"


class PaymentMode(str, Enum):
    CASH = "Cash"
    UPI = "UPI"
    CARD = "Card"
    OTHER = "Other"


class UserRole(str, Enum):
    ADMIN = "Admin"
    OPERATOR = "Operator"


class MaintenanceJobStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    WAITING_PARTS = "Waiting for Parts"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


Priority = Literal["Low", "Medium", "High", "Critical"]


# =============== RECORDS ==================
class Record(BaseModel):
    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    id: int


class City(Record):
    name: str
    zap_point_address: Optional[str] = None


class Rate(Record):
    city_id: Optional[int] = None
    client_name: Optional[str] = None
    daily_rent: float = 0
    monthly_rent: Optional[float] = None
    security_deposit: float = 0


class Vehicle(Record):
    model_name: Optional[str] = None
    city_id: Optional[int] = None
    status: VehicleStatus = VehicleStatus.AVAILABLE
    battery_id: Optional[int] = None
    health_status: HealthStatus = HealthStatus.GOOD


class Battery(Record):
    serial_number: Optional[str] = None
    city_id: Optional[int] = None
    status: BatteryStatus = BatteryStatus.AVAILABLE
    # Stored as entered; bulk input is clamped to 0-100 before writing
    charge_percentage: Optional[int] = 100
    assigned_vehicle_id: Optional[int] = None
    notes: Optional[str] = None


class BankDetails(BaseModel):
    account_name: str = ""
    account_number: str = ""
    bank_name: str = ""
    ifsc_code: str = ""


class Customer(Record):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    aadhar_number: Optional[str] = None
    pan_number: Optional[str] = None
    bank_details: Optional[BankDetails] = None
    city_id: Optional[int] = None


class Booking(Record):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    vehicle_id: Optional[int] = None
    battery_id: Optional[int] = None
    city_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    daily_rent: float = 0
    total_rent: float = 0
    security_deposit: float = 0
    amount_collected: float = 0
    mode_of_payment: PaymentMode = PaymentMode.CASH
    payment_transaction_id: Optional[str] = None
    status: BookingStatus = BookingStatus.ACTIVE
    fine_amount: float = 0
    post_ride_checklist: Optional[Dict[str, bool]] = None
    post_ride_notes: Optional[str] = None
    pause_reason: Optional[str] = None
    paused_at: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _null_accumulators(cls, data):
        # Rows written outside the console may leave accumulators NULL
        if isinstance(data, dict):
            for key in ("daily_rent", "total_rent", "security_deposit", "amount_collected", "fine_amount"):
                if data.get(key) is None:
                    data = {**data, key: 0}
        return data


class User(Record):
    name: Optional[str] = None
    role: UserRole = UserRole.OPERATOR
    city_id: Optional[int] = None


class RefundRequest(Record):
    booking_id: Optional[int] = None
    customer_name: Optional[str] = None
    amount: float = 0
    status: Literal["Pending", "Processed"] = "Pending"
    date: Optional[str] = None


class VehicleLog(Record):
    vehicle_id: Optional[int] = None
    date: Optional[str] = None
    status: Optional[VehicleStatus] = None
    notes: Optional[str] = None
    checklist: Optional[Dict[str, bool]] = None
    booking_id: Optional[int] = None


class MaintenanceJob(Record):
    vehicle_id: Optional[int] = None
    city_id: Optional[int] = None
    status: MaintenanceJobStatus = MaintenanceJobStatus.OPEN
    priority: Priority = "Medium"
    issue_description: Optional[str] = None
    resolution_notes: Optional[str] = None
    assigned_technician: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    estimated_cost: float = 0
    actual_cost: float = 0
    downtime_hours: float = 0


class SparePartMaster(Record):
    name: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None
    unit_price: float = 0
    min_stock_level: int = 0


class SpareInventory(Record):
    part_id: Optional[int] = None
    city_id: Optional[int] = None
    quantity: int = 0
    last_restocked_at: Optional[str] = None


# =============== REQUESTS ==================
class CreateBookingRequest(BaseModel):
    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=1)
    vehicle_id: int
    battery_id: Optional[int] = None
    city_id: int
    start_date: date
    end_date: date
    daily_rent: float = Field(0, ge=0)
    total_rent: float = Field(0, ge=0)
    security_deposit: float = Field(0, ge=0)
    amount_collected: float = Field(0, ge=0)
    mode_of_payment: PaymentMode = PaymentMode.CASH
    payment_transaction_id: Optional[str] = None

    @model_validator(mode="after")
    def _dates_in_order(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date is before start_date")
        return self


class ReturnChecklist(BaseModel):
    """Post-ride inspection submitted with a status change."""
    items: Dict[str, bool] = Field(default_factory=dict)
    fine: float = Field(0, ge=0)
    notes: str = ""
    settlement_adjustment: float = 0
    # Overrides the status derived from the flagged items
    target_vehicle_status: Optional[VehicleStatus] = None
    payment_transaction_id: Optional[str] = None

    @property
    def has_damage(self) -> bool:
        return any(self.items.values())

    def resolved_vehicle_status(self) -> VehicleStatus:
        if self.target_vehicle_status is not None:
            return self.target_vehicle_status
        return VehicleStatus.MAINTENANCE if self.has_damage else VehicleStatus.AVAILABLE


class PauseBookingRequest(BaseModel):
    booking_id: int
    reason: str = Field(..., min_length=1)


class ResumeBookingRequest(BaseModel):
    booking_id: int
    vehicle_id: int
    battery_id: Optional[int] = None


class ChangeBatteryRequest(BaseModel):
    booking_id: int
    new_battery_id: int


class SwapVehicleRequest(BaseModel):
    booking_id: int
    new_vehicle_id: int
    reason: str = ""
    fine_adjustment: float = Field(0, ge=0)
    checklist: Dict[str, bool] = Field(default_factory=dict)


class ExtendBookingRequest(BaseModel):
    booking_id: int
    extra_rent: float = Field(0, ge=0)
    collection: float = Field(0, ge=0)
    new_end_date: date


class SettleDueRequest(BaseModel):
    booking_id: int
    amount: float = Field(0, ge=0)
    new_end_date: Optional[date] = None
    extra_rent: Optional[float] = Field(None, ge=0)


class CreateMaintenanceJobRequest(BaseModel):
    vehicle_id: int
    city_id: int
    priority: Priority = "Medium"
    issue_description: str = Field(..., min_length=1)
    assigned_technician: Optional[str] = None
    estimated_cost: float = Field(0, ge=0)


class LegacyRow(BaseModel):
    """One historical booking parsed from an import file."""
    customer_name: str = ""
    customer_phone: Optional[str] = None
    vehicle_id: Optional[int] = None
    battery_id: Optional[int] = None
    city_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str = ""
    total_rent: float = 0
    amount_collected: float = 0
    security_deposit: float = 0
    fine_amount: float = 0


RECORD_MODELS = {
    "cities": City,
    "rates": Rate,
    "vehicles": Vehicle,
    "batteries": Battery,
    "customers": Customer,
    "bookings": Booking,
    "users": User,
    "refund_requests": RefundRequest,
    "vehicle_logs": VehicleLog,
    "maintenance_jobs": MaintenanceJob,
    "spare_parts_master": SparePartMaster,
    "spare_inventory": SpareInventory,
}
