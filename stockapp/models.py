from decimal import Decimal
from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from stockapp.extensions import db


def _as_float(value):
    if value is None:
        return None
    return float(value)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class UserRole:
    ADMIN = "Admin"
    MANAGER = "Manager"
    STAFF = "Staff"

    ALL_ROLES = [ADMIN, MANAGER, STAFF]
    APPROVER_ROLES = {ADMIN, MANAGER}
    DESCRIPTIONS = {
        ADMIN: "Administrator",
        MANAGER: "Warehouse manager",
        STAFF: "Warehouse staff",
    }


class MovementStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    ALL_STATUSES = [PENDING, APPROVED, REJECTED]
    TERMINAL_STATES = {APPROVED, REJECTED}
    RESOLUTIONS = (APPROVED, REJECTED)


class MovementType:
    RECEIVE = "receive"
    PRODUCTION = "production"
    RETURN_FROM_CUSTOMER = "return_from_customer"
    TRANSFER_IN = "transfer_in"
    ADJUSTMENT_INCREASE = "adjustment_increase"
    SALE = "sale"
    TRANSFER_OUT = "transfer_out"
    DISPOSAL = "disposal"
    RETURN_TO_SUPPLIER = "return_to_supplier"
    ADJUSTMENT_DECREASE = "adjustment_decrease"

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    INTERNAL = "internal"

    # type -> (ledger sign, category)
    TAXONOMY = {
        RECEIVE: (1, INBOUND),
        PRODUCTION: (1, INBOUND),
        RETURN_FROM_CUSTOMER: (1, INBOUND),
        TRANSFER_IN: (1, INTERNAL),
        ADJUSTMENT_INCREASE: (1, INTERNAL),
        SALE: (-1, OUTBOUND),
        TRANSFER_OUT: (-1, OUTBOUND),
        DISPOSAL: (-1, OUTBOUND),
        RETURN_TO_SUPPLIER: (-1, OUTBOUND),
        ADJUSTMENT_DECREASE: (-1, INTERNAL),
    }
    ALL_TYPES = list(TAXONOMY)
    ADJUSTMENT_TYPES = {ADJUSTMENT_INCREASE, ADJUSTMENT_DECREASE}
    TRANSFER_TYPES = {TRANSFER_OUT, TRANSFER_IN}

    @classmethod
    def sign(cls, movement_type: str) -> int:
        return cls.TAXONOMY[movement_type][0]

    @classmethod
    def category(cls, movement_type: str) -> str:
        return cls.TAXONOMY[movement_type][1]

    @classmethod
    def signed_quantity(cls, movement_type: str, quantity) -> Decimal:
        return Decimal(cls.sign(movement_type)) * Decimal(quantity)


class LocationType:
    WAREHOUSE = "warehouse"
    ZONE = "zone"
    AISLE = "aisle"
    SHELF = "shelf"
    BIN = "bin"
    LOCATION = "location"

    ALL_TYPES = [WAREHOUSE, ZONE, AISLE, SHELF, BIN, LOCATION]


class Role(db.Model):
    __tablename__ = "role"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    description = db.Column(db.String(255))

    users = db.relationship("User", back_populates="role")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Role {self.name}>"


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    api_token = db.Column(db.String(128), unique=True, nullable=True)
    role_id = db.Column(db.Integer, db.ForeignKey("role.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    role = db.relationship("Role", back_populates="users", lazy="joined")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User {self.username}>"


class Item(db.Model):
    __tablename__ = "item"

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(120), unique=True, nullable=False)  # read-only once created
    barcode = db.Column(db.String(120), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(120), nullable=True, index=True)
    unit = db.Column(db.String(32), nullable=False, default="ea")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    allocations = db.relationship(
        "ItemLocation",
        back_populates="item",
        order_by="ItemLocation.location_id",
    )

    def total_stock(self) -> Decimal:
        return sum((Decimal(row.quantity or 0) for row in self.allocations), Decimal("0"))

    def summary(self) -> dict:
        return {"id": self.id, "sku": self.sku, "name": self.name}

    def to_dict(self, *, include_allocations: bool = True) -> dict:
        payload = {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "unit": self.unit,
            "is_active": self.is_active,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }
        if include_allocations:
            payload["item_locations"] = [row.to_dict() for row in self.allocations]
            payload["total_stock"] = float(self.total_stock())
        return payload


class Location(db.Model):
    __tablename__ = "location"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(32), nullable=False, default=LocationType.LOCATION)
    parent_id = db.Column(
        db.Integer, db.ForeignKey("location.id", ondelete="RESTRICT"), nullable=True
    )
    path = db.Column(db.String(1024), nullable=False, index=True)
    level = db.Column(db.Integer, nullable=False, default=0)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    parent = db.relationship("Location", remote_side=[id], backref="children")

    def summary(self) -> dict:
        return {"id": self.id, "name": self.name, "path": self.path}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "parent_id": self.parent_id,
            "path": self.path,
            "level": self.level,
            "metadata": self.meta or {},
            "is_active": self.is_active,
            "created_at": _isoformat(self.created_at),
        }


class ItemLocation(db.Model):
    """On-hand quantity of one item at one location."""

    __tablename__ = "item_location"
    __table_args__ = (
        db.UniqueConstraint("item_id", "location_id", name="uq_item_location_pair"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("item.id", ondelete="CASCADE"), nullable=False
    )
    location_id = db.Column(
        db.Integer, db.ForeignKey("location.id", ondelete="RESTRICT"), nullable=False
    )
    quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    min_threshold = db.Column(db.Numeric(14, 3), nullable=True)
    max_threshold = db.Column(db.Numeric(14, 3), nullable=True)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    item = db.relationship("Item", back_populates="allocations")
    location = db.relationship("Location", backref="allocations")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "location_id": self.location_id,
            "quantity": _as_float(self.quantity),
            "min_threshold": _as_float(self.min_threshold),
            "max_threshold": _as_float(self.max_threshold),
            "locations": self.location.summary() if self.location else None,
        }


class StockMovement(db.Model):
    __tablename__ = "stock_movement"
    __table_args__ = (
        db.Index("ix_stock_movement_item_created", "item_id", "created_at"),
        db.Index("ix_stock_movement_status_created", "status", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("item.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("location.id"), nullable=False)
    movement_type = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    before_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    after_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)
    total_value = db.Column(db.Numeric(14, 2), nullable=True)
    batch_number = db.Column(db.String(120), nullable=True)
    serial_number = db.Column(db.String(120), nullable=True)
    reference_number = db.Column(db.String(120), nullable=True)
    attachment_url = db.Column(db.String(1024), nullable=True)
    reason = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(16), nullable=False, default=MovementStatus.PENDING, index=True
    )
    transfer_reference = db.Column(db.String(64), nullable=True, index=True)
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    approved_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    item = db.relationship("Item", backref="movements")
    location = db.relationship("Location", backref="movements")
    created_by_user = db.relationship("User", foreign_keys=[created_by])
    approved_by_user = db.relationship("User", foreign_keys=[approved_by])

    @property
    def signed_quantity(self) -> Decimal:
        return MovementType.signed_quantity(self.movement_type, self.quantity)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "location_id": self.location_id,
            "movement_type": self.movement_type,
            "quantity": _as_float(self.quantity),
            "before_quantity": _as_float(self.before_quantity),
            "after_quantity": _as_float(self.after_quantity),
            "unit_cost": _as_float(self.unit_cost),
            "total_value": _as_float(self.total_value),
            "batch_number": self.batch_number,
            "serial_number": self.serial_number,
            "reference_number": self.reference_number,
            "attachment_url": self.attachment_url,
            "reason": self.reason,
            "notes": self.notes,
            "status": self.status,
            "transfer_reference": self.transfer_reference,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "approved_at": _isoformat(self.approved_at),
            "is_active": self.is_active,
            "created_at": _isoformat(self.created_at),
            "items": self.item.summary() if self.item else None,
            "locations": self.location.summary() if self.location else None,
            "created_by_user": (
                {"username": self.created_by_user.username}
                if self.created_by_user
                else None
            ),
            "approved_by_user": (
                {"username": self.approved_by_user.username}
                if self.approved_by_user
                else None
            ),
        }

    def __repr__(self):
        return (
            f"<StockMovement {self.id}: {self.movement_type} {self.quantity} "
            f"[{self.status}]>"
        )
