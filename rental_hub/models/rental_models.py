from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rental_hub.db.base import Base


class User(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Email = Column(String(255), nullable=False, unique=True)
    Role = Column(String(20), nullable=False, default="customer")
    Company = Column(String(255))
    Phone = Column(String(50))
    WalletBalance = Column(Numeric(14, 2), nullable=False, default=0)
    TotalRevenue = Column(Numeric(14, 2), nullable=False, default=0)
    CreatedDate = Column(DateTime, server_default=func.now())


class Product(Base):
    __tablename__ = "Products"

    ProductID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Description = Column(String(2000))
    Category = Column(String(100))
    DailyRate = Column(Numeric(12, 2))
    WeeklyRate = Column(Numeric(12, 2))
    MonthlyRate = Column(Numeric(12, 2))
    Deposit = Column(Numeric(12, 2))
    Stock = Column(Integer, nullable=False, default=0)
    Available = Column(Integer, nullable=False, default=0)
    VendorID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    VendorName = Column(String(255))
    Status = Column(String(20), default="active")
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Vendor = relationship("User")


class Order(Base):
    __tablename__ = "Orders"

    OrderID = Column(Integer, primary_key=True)
    OrderNumber = Column(String(50), nullable=False, unique=True)
    QuotationID = Column(String(50))
    CustomerID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    CustomerName = Column(String(255))
    CustomerEmail = Column(String(255))
    VendorID = Column(Integer, ForeignKey("Users.UserID"))
    VendorName = Column(String(255))
    VendorEmail = Column(String(255))
    Subtotal = Column(Numeric(12, 2), default=0)
    TaxAmount = Column(Numeric(12, 2), default=0)
    DepositAmount = Column(Numeric(12, 2), default=0)
    TotalAmount = Column(Numeric(12, 2), default=0)
    PaidAmount = Column(Numeric(12, 2), default=0)
    Status = Column(String(20), nullable=False, default="pending")
    PickupDate = Column(DateTime)
    ReturnDate = Column(DateTime)
    ActualReturnDate = Column(DateTime)
    LateFee = Column(Numeric(12, 2), default=0)
    DamageCharges = Column(Numeric(12, 2), default=0)
    Notes = Column(String(2000))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    OrderItems = relationship(
        "OrderItem",
        back_populates="Order",
        cascade="all, delete-orphan",
        order_by="OrderItem.OrderItemID",
    )


class OrderItem(Base):
    __tablename__ = "OrderItems"
    __table_args__ = (UniqueConstraint("OrderID", "ProductID", name="uq_orderitems_order_product"),)

    OrderItemID = Column(Integer, primary_key=True)
    OrderID = Column(Integer, ForeignKey("Orders.OrderID"), nullable=False)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    ProductName = Column(String(255))
    Quantity = Column(Integer, nullable=False, default=1)
    PickedUpQuantity = Column(Integer, nullable=False, default=0)
    ReturnedQuantity = Column(Integer, nullable=False, default=0)
    StartDate = Column(DateTime)
    EndDate = Column(DateTime)
    RentalDays = Column(Integer)
    DailyRate = Column(Numeric(12, 2))
    Subtotal = Column(Numeric(12, 2))
    Notes = Column(String(1000))

    Order = relationship("Order", back_populates="OrderItems")
    Product = relationship("Product")


class Invoice(Base):
    __tablename__ = "Invoices"

    InvoiceID = Column(Integer, primary_key=True)
    InvoiceNumber = Column(String(50), nullable=False, unique=True)
    OrderID = Column(Integer, ForeignKey("Orders.OrderID"), nullable=False, unique=True)
    OrderNumber = Column(String(50), nullable=False)
    CustomerID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    CustomerName = Column(String(255))
    VendorID = Column(Integer, ForeignKey("Users.UserID"))
    VendorName = Column(String(255))
    LineItems = Column(Text)
    Subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    TaxAmount = Column(Numeric(12, 2), nullable=False, default=0)
    TotalAmount = Column(Numeric(12, 2), nullable=False, default=0)
    PaidAmount = Column(Numeric(12, 2), nullable=False, default=0)
    BalanceAmount = Column(Numeric(12, 2), nullable=False, default=0)
    Status = Column(String(20), nullable=False, default="pending")
    IssueDate = Column(DateTime)
    DueDate = Column(DateTime, nullable=False)
    PaidDate = Column(DateTime)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Order = relationship("Order")
    Payments = relationship("Payment", back_populates="Invoice", cascade="all, delete-orphan")


class Payment(Base):
    __tablename__ = "Payments"

    PaymentID = Column(Integer, primary_key=True)
    InvoiceID = Column(Integer, ForeignKey("Invoices.InvoiceID"), nullable=False)
    InvoiceNumber = Column(String(50))
    Amount = Column(Numeric(12, 2), nullable=False)
    Method = Column(String(30), nullable=False)
    Reference = Column(String(200))
    Notes = Column(String(1000))
    CreatedDate = Column(DateTime, server_default=func.now())

    Invoice = relationship("Invoice", back_populates="Payments")


class ReturnRequest(Base):
    __tablename__ = "ReturnRequests"

    ReturnRequestID = Column(Integer, primary_key=True)
    RequestNumber = Column(String(50), nullable=False, unique=True)
    OrderID = Column(Integer, ForeignKey("Orders.OrderID"), nullable=False)
    OrderNumber = Column(String(50))
    CustomerID = Column(Integer, ForeignKey("Users.UserID"), nullable=False)
    CustomerName = Column(String(255))
    CustomerEmail = Column(String(255))
    VendorID = Column(Integer, ForeignKey("Users.UserID"))
    VendorName = Column(String(255))
    Reason = Column(String(50), nullable=False)
    ReasonDetails = Column(String(2000))
    PreferredDate = Column(DateTime)
    Status = Column(String(20), nullable=False, default="pending")
    ScheduledDate = Column(DateTime)
    CompletedDate = Column(DateTime)
    VendorNotes = Column(String(2000))
    CustomerNotes = Column(String(2000))
    RefundAmount = Column(Numeric(12, 2), default=0)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Order = relationship("Order")
    Items = relationship(
        "ReturnRequestItem",
        back_populates="ReturnRequest",
        cascade="all, delete-orphan",
        order_by="ReturnRequestItem.ReturnRequestItemID",
    )


class ReturnRequestItem(Base):
    __tablename__ = "ReturnRequestItems"

    ReturnRequestItemID = Column(Integer, primary_key=True)
    ReturnRequestID = Column(Integer, ForeignKey("ReturnRequests.ReturnRequestID"), nullable=False)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    ProductName = Column(String(255))
    Quantity = Column(Integer)
    ReturnQuantity = Column(Integer, nullable=False)
    Condition = Column(String(20), default="good")

    ReturnRequest = relationship("ReturnRequest", back_populates="Items")


class InventoryMovement(Base):
    __tablename__ = "InventoryMovements"

    MovementID = Column(Integer, primary_key=True)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    OrderID = Column(Integer, ForeignKey("Orders.OrderID"))
    ReturnRequestID = Column(Integer, ForeignKey("ReturnRequests.ReturnRequestID"))
    Delta = Column(Integer, nullable=False)
    Reason = Column(String(30), nullable=False)
    DedupeKey = Column(String(200), nullable=False, unique=True)
    CreatedAt = Column(DateTime, server_default=func.now())


class SequenceCounter(Base):
    __tablename__ = "SequenceCounters"

    Name = Column(String(50), primary_key=True)
    Value = Column(Integer, nullable=False, default=0)


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())
