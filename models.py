from sqlalchemy import Column, Integer, Text, Float, JSON
from database import Base

# No foreign keys: ids stored on one row may dangle once the referenced row is gone.

class City(Base):
    __tablename__ = 'cities'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    zap_point_address = Column(Text)

class Rate(Base):
    __tablename__ = 'rates'
    id = Column(Integer, primary_key=True, autoincrement=True)
    city_id = Column(Integer)
    client_name = Column(Text)
    daily_rent = Column(Float, default=0)
    monthly_rent = Column(Float)
    security_deposit = Column(Float, default=0)

class Vehicle(Base):
    __tablename__ = 'vehicles'
    id = Column(Integer, primary_key=True, autoincrement=True)
    model_name = Column(Text)
    city_id = Column(Integer)
    status = Column(Text, default='Available')
    battery_id = Column(Integer)
    health_status = Column(Text, default='Good')

class Battery(Base):
    __tablename__ = 'batteries'
    id = Column(Integer, primary_key=True, autoincrement=True)
    serial_number = Column(Text)
    city_id = Column(Integer)
    status = Column(Text, default='Available')
    charge_percentage = Column(Integer, default=100)
    assigned_vehicle_id = Column(Integer)
    notes = Column(Text)

class Customer(Base):
    __tablename__ = 'customers'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text)
    phone = Column(Text)
    address = Column(Text)
    aadhar_number = Column(Text)
    pan_number = Column(Text)
    bank_details = Column(JSON)
    city_id = Column(Integer)

class Booking(Base):
    __tablename__ = 'bookings'
    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_name = Column(Text)
    customer_phone = Column(Text)
    vehicle_id = Column(Integer)
    battery_id = Column(Integer)
    city_id = Column(Integer)
    start_date = Column(Text)
    end_date = Column(Text)
    daily_rent = Column(Float, default=0)
    total_rent = Column(Float, default=0)
    security_deposit = Column(Float, default=0)
    amount_collected = Column(Float, default=0)
    mode_of_payment = Column(Text, default='Cash')
    payment_transaction_id = Column(Text)
    status = Column(Text, default='Active')
    fine_amount = Column(Float, default=0)
    post_ride_checklist = Column(JSON)
    post_ride_notes = Column(Text)
    pause_reason = Column(Text)
    paused_at = Column(Text)

class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text)
    role = Column(Text, default='Operator')
    city_id = Column(Integer)

class RefundRequest(Base):
    __tablename__ = 'refund_requests'
    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer)
    customer_name = Column(Text)
    amount = Column(Float, default=0)
    status = Column(Text, default='Pending')
    date = Column(Text)

class VehicleLog(Base):
    __tablename__ = 'vehicle_logs'
    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer)
    date = Column(Text)
    status = Column(Text)
    notes = Column(Text)
    checklist = Column(JSON)
    booking_id = Column(Integer)

class MaintenanceJob(Base):
    __tablename__ = 'maintenance_jobs'
    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer)
    city_id = Column(Integer)
    status = Column(Text, default='Open')
    priority = Column(Text, default='Medium')
    issue_description = Column(Text)
    resolution_notes = Column(Text)
    assigned_technician = Column(Text)
    started_at = Column(Text)
    completed_at = Column(Text)
    estimated_cost = Column(Float, default=0)
    actual_cost = Column(Float, default=0)
    downtime_hours = Column(Float, default=0)

class SparePartMaster(Base):
    __tablename__ = 'spare_parts_master'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text)
    sku = Column(Text)
    category = Column(Text)
    unit_price = Column(Float, default=0)
    min_stock_level = Column(Integer, default=0)

class SpareInventory(Base):
    __tablename__ = 'spare_inventory'
    id = Column(Integer, primary_key=True, autoincrement=True)
    part_id = Column(Integer)
    city_id = Column(Integer)
    quantity = Column(Integer, default=0)
    last_restocked_at = Column(Text)
