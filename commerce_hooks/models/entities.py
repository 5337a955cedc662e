"""
SQLAlchemy ORM entities.
"""

import uuid
from datetime import datetime
from sqlalchemy import JSON, String, Text, Float, Boolean, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from commerce_hooks.models.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ── Tenancy ──────────────────────────────────────────────
class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    whatsapp_conversations_used: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Plan(Base):
    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    max_whatsapp_conversations: Mapped[int] = mapped_column(Integer, nullable=True)  # -1 = unlimited


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    plan_id: Mapped[str] = mapped_column(ForeignKey("plans.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active")

    plan: Mapped["Plan"] = relationship()


# ── Payments ─────────────────────────────────────────────
class PaymentGatewayConfig(Base):
    __tablename__ = "payment_gateway_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)  # wompi / epayco
    public_key: Mapped[str] = mapped_column(String(255), nullable=True)
    private_key_encrypted: Mapped[str] = mapped_column(Text, nullable=True)
    integrity_secret_encrypted: Mapped[str] = mapped_column(Text, nullable=True)
    encryption_key_encrypted: Mapped[str] = mapped_column(Text, nullable=True)
    is_test_mode: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=True)
    phone: Mapped[str] = mapped_column(String(50), nullable=True, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(String(30), default="web")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id"), nullable=True)
    order_number: Mapped[str] = mapped_column(String(50), nullable=True)
    total: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending / confirmed / cancelled
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")  # pending / paid / failed / refunded
    confirmed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    customer: Mapped["Customer"] = relationship()
    items: Mapped[list["OrderItem"]] = relationship(back_populates="order")


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    order: Mapped["Order"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship()


class StoreTransaction(Base):
    __tablename__ = "store_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, default=0)  # cents
    currency: Mapped[str] = mapped_column(String(10), default="COP")
    status: Mapped[str] = mapped_column(String(20), default="pending")
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_transaction_id: Mapped[str] = mapped_column(String(100), nullable=True, index=True)
    provider_reference: Mapped[str] = mapped_column(String(100), nullable=True, index=True)
    provider_response: Mapped[dict] = mapped_column(JSON, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=True)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)  # epayco / wompi / whatsapp-meta
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # success / error / duplicate / warning / processing
    instance_name: Mapped[str] = mapped_column(String(100), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=True)
    response: Mapped[dict] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ── WhatsApp ─────────────────────────────────────────────
class WhatsAppInstance(Base):
    __tablename__ = "whatsapp_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    instance_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    instance_type: Mapped[str] = mapped_column(String(20), default="corporate")  # corporate / personal
    provider: Mapped[str] = mapped_column(String(20), default="evolution")  # evolution / meta
    status: Mapped[str] = mapped_column(String(20), default="disconnected")
    phone_number: Mapped[str] = mapped_column(String(50), nullable=True)
    meta_phone_number_id: Mapped[str] = mapped_column(String(100), nullable=True, index=True)
    meta_access_token: Mapped[str] = mapped_column(Text, nullable=True)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_on_sale: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_on_low_stock: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_on_new_conversation: Mapped[bool] = mapped_column(Boolean, default=False)
    connected_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Chat(Base):
    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id"), nullable=True)
    channel: Mapped[str] = mapped_column(String(30), default="whatsapp")
    whatsapp_chat_id: Mapped[str] = mapped_column(String(50), nullable=True)
    phone_number: Mapped[str] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    messages: Mapped[list["Message"]] = relationship(back_populates="chat", order_by="Message.created_at")


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    chat_id: Mapped[str] = mapped_column(ForeignKey("chats.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # user / assistant
    content: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[dict] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    chat: Mapped["Chat"] = relationship(back_populates="messages")


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict] = mapped_column(JSON, nullable=True)


# ── Integrations ─────────────────────────────────────────
class Integration(Base):
    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("organization_id", "provider"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)  # nuby
    status: Mapped[str] = mapped_column(String(20), default="disconnected")  # connected / disconnected / error
    credentials: Mapped[dict] = mapped_column(JSON, nullable=True)
    last_sync_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)


class IntegrationSyncLog(Base):
    __tablename__ = "integration_sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    integration_id: Mapped[str] = mapped_column(ForeignKey("integrations.id"), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False)
    sync_type: Mapped[str] = mapped_column(String(20), default="incremental")  # full / incremental
    status: Mapped[str] = mapped_column(String(20), default="started")  # started / success / error
    items_processed: Mapped[int] = mapped_column(Integer, default=0)
    items_created: Mapped[int] = mapped_column(Integer, default=0)
    items_updated: Mapped[int] = mapped_column(Integer, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    error_details: Mapped[dict] = mapped_column(JSON, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    external_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    external_code: Mapped[str] = mapped_column(String(50), nullable=True)
    external_url: Mapped[str] = mapped_column(String(500), nullable=True)

    title: Mapped[str] = mapped_column(String(500), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    property_type: Mapped[str] = mapped_column(String(50), nullable=True)
    property_class: Mapped[str] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active")

    price_rent: Mapped[float] = mapped_column(Float, nullable=True)
    price_sale: Mapped[float] = mapped_column(Float, nullable=True)
    price_admin: Mapped[float] = mapped_column(Float, nullable=True)

    country: Mapped[str] = mapped_column(String(100), nullable=True)
    department: Mapped[str] = mapped_column(String(100), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=True)
    neighborhood: Mapped[str] = mapped_column(String(150), nullable=True)
    address: Mapped[str] = mapped_column(String(255), nullable=True)
    coordinates: Mapped[str] = mapped_column(String(100), nullable=True)

    bedrooms: Mapped[int] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[int] = mapped_column(Integer, nullable=True)
    area_m2: Mapped[float] = mapped_column(Float, nullable=True)
    floor_number: Mapped[int] = mapped_column(Integer, nullable=True)
    parking_spots: Mapped[int] = mapped_column(Integer, nullable=True)
    age_years: Mapped[int] = mapped_column(Integer, nullable=True)
    stratum: Mapped[str] = mapped_column(String(50), nullable=True)

    features: Mapped[list] = mapped_column(JSON, nullable=True)
    images: Mapped[list] = mapped_column(JSON, nullable=True)
    videos: Mapped[list] = mapped_column(JSON, nullable=True)
    owners: Mapped[list] = mapped_column(JSON, nullable=True)

    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    external_data: Mapped[dict] = mapped_column(JSON, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
