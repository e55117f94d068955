"""
Marshmallow schemas for API serialization.
Converts SQLAlchemy models to JSON-safe dictionaries and validates
request bodies.
"""
from marshmallow import Schema, fields, validate, EXCLUDE

from app.models.subscription import BillingInterval


# ── Shared helpers ──────────────────────────────────────────

class BaseSchema(Schema):
    """Base schema with common config."""
    class Meta:
        ordered = True


class InputSchema(Schema):
    """Base schema for request bodies (unknown keys are dropped)."""
    class Meta:
        ordered = True
        unknown = EXCLUDE


def _enum_value(attr):
    def getter(obj):
        value = getattr(obj, attr)
        return value.value if value is not None else None
    return getter


# ── User ────────────────────────────────────────────────────

class UserSchema(BaseSchema):
    """Full user representation (for /me endpoint)."""
    id = fields.Int(dump_only=True)
    email = fields.Email()
    first_name = fields.Str()
    last_name = fields.Str()
    full_name = fields.Str(dump_only=True)
    is_active = fields.Bool()
    current_plan_name = fields.Str(dump_only=True)
    created_at = fields.DateTime(format='iso')


class RegisterSchema(InputSchema):
    email = fields.Email(required=True)
    password = fields.Str(required=True, validate=validate.Length(min=8, max=128))
    first_name = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    last_name = fields.Str(required=True, validate=validate.Length(min=1, max=50))


# ── Billing ─────────────────────────────────────────────────

class SubscriptionPlanSchema(BaseSchema):
    """Plan tier with its price and feature limits."""
    id = fields.Int(dump_only=True)
    name = fields.Str()
    description = fields.Str()
    price = fields.Decimal(as_string=True)
    currency = fields.Str()
    features = fields.Dict()


class SubscriptionSchema(BaseSchema):
    """Current subscription of a user."""
    id = fields.Int(dump_only=True)
    plan = fields.Nested(SubscriptionPlanSchema, dump_only=True)
    status = fields.Function(_enum_value('status'))
    interval = fields.Function(_enum_value('interval'))
    current_period_start = fields.DateTime(format='iso')
    current_period_end = fields.DateTime(format='iso')
    cancel_at_period_end = fields.Bool()
    canceled_at = fields.DateTime(format='iso')
    days_remaining = fields.Int(dump_only=True)


class SubscriptionInvoiceSchema(BaseSchema):
    id = fields.Int(dump_only=True)
    paystack_invoice_code = fields.Str()
    amount = fields.Decimal(as_string=True)
    status = fields.Function(_enum_value('status'))
    paid_at = fields.DateTime(format='iso')


class SubscribeSchema(InputSchema):
    """Body of POST /billing/subscribe."""
    plan_id = fields.Int(required=True)
    interval = fields.Str(
        load_default=BillingInterval.MONTHLY.value,
        validate=validate.OneOf([i.value for i in BillingInterval]),
    )


class VerifyPaymentSchema(InputSchema):
    """Body / query of the payment verification callback."""
    reference = fields.Str(required=True, validate=validate.Length(min=1))
    subscription_id = fields.Int(required=True)


# ── Business ────────────────────────────────────────────────

class BusinessSchema(BaseSchema):
    id = fields.Int(dump_only=True)
    name = fields.Str()
    email = fields.Str()
    phone = fields.Str()
    address = fields.Str()
    tax_number = fields.Str()
    currency = fields.Str()
    created_at = fields.DateTime(format='iso')


class BusinessCreateSchema(InputSchema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    email = fields.Email(allow_none=True)
    phone = fields.Str(allow_none=True, validate=validate.Length(max=30))
    address = fields.Str(allow_none=True)
    tax_number = fields.Str(allow_none=True, validate=validate.Length(max=50))
    currency = fields.Str(load_default='NGN', validate=validate.Length(equal=3))


# ── Client ──────────────────────────────────────────────────

class ClientSchema(BaseSchema):
    id = fields.Int(dump_only=True)
    business_id = fields.Int()
    name = fields.Str()
    email = fields.Str()
    phone = fields.Str()
    address = fields.Str()
    city = fields.Str()
    state = fields.Str()
    postal_code = fields.Str()
    country = fields.Str()
    notes = fields.Str()
    created_at = fields.DateTime(format='iso')


class ClientCreateSchema(InputSchema):
    business_id = fields.Int(required=True)
    name = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    email = fields.Email(allow_none=True)
    phone = fields.Str(allow_none=True, validate=validate.Length(max=30))
    address = fields.Str(allow_none=True)
    city = fields.Str(allow_none=True)
    state = fields.Str(allow_none=True)
    postal_code = fields.Str(allow_none=True)
    country = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)


# ── Documents ───────────────────────────────────────────────

class InvoiceSchema(BaseSchema):
    id = fields.Int(dump_only=True)
    business_id = fields.Int()
    client_id = fields.Int()
    invoice_number = fields.Str()
    issue_date = fields.Date()
    due_date = fields.Date()
    status = fields.Function(_enum_value('status'))
    total_amount = fields.Decimal(as_string=True)
    notes = fields.Str()
    created_at = fields.DateTime(format='iso')


class InvoiceCreateSchema(InputSchema):
    business_id = fields.Int(required=True)
    client_id = fields.Int(required=True)
    invoice_number = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    issue_date = fields.Date()
    due_date = fields.Date(required=True)
    total_amount = fields.Decimal(places=2, load_default=0, validate=validate.Range(min=0))
    notes = fields.Str(allow_none=True)


class EstimateSchema(BaseSchema):
    id = fields.Int(dump_only=True)
    business_id = fields.Int()
    client_id = fields.Int()
    estimate_number = fields.Str()
    issue_date = fields.Date()
    expiry_date = fields.Date()
    status = fields.Function(_enum_value('status'))
    total_amount = fields.Decimal(as_string=True)
    notes = fields.Str()
    created_at = fields.DateTime(format='iso')


class EstimateCreateSchema(InputSchema):
    business_id = fields.Int(required=True)
    client_id = fields.Int(required=True)
    estimate_number = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    issue_date = fields.Date()
    expiry_date = fields.Date(required=True)
    total_amount = fields.Decimal(places=2, load_default=0, validate=validate.Range(min=0))
    notes = fields.Str(allow_none=True)


class ReceiptSchema(BaseSchema):
    id = fields.Int(dump_only=True)
    business_id = fields.Int()
    client_id = fields.Int()
    invoice_id = fields.Int()
    receipt_number = fields.Str()
    date = fields.Date()
    amount = fields.Decimal(as_string=True)
    payment_method = fields.Str()
    notes = fields.Str()
    created_at = fields.DateTime(format='iso')


class ReceiptCreateSchema(InputSchema):
    business_id = fields.Int(required=True)
    client_id = fields.Int(required=True)
    invoice_id = fields.Int(allow_none=True)
    receipt_number = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    date = fields.Date()
    amount = fields.Decimal(places=2, required=True, validate=validate.Range(min=0))
    payment_method = fields.Str(
        load_default='cash',
        validate=validate.OneOf(['cash', 'bank_transfer', 'card', 'cheque', 'other']),
    )
    notes = fields.Str(allow_none=True)


class ExpenseSchema(BaseSchema):
    id = fields.Int(dump_only=True)
    business_id = fields.Int()
    category = fields.Str()
    description = fields.Str()
    amount = fields.Decimal(as_string=True)
    date = fields.Date()
    receipt_url = fields.Str()
    created_at = fields.DateTime(format='iso')


class ExpenseCreateSchema(InputSchema):
    business_id = fields.Int(required=True)
    category = fields.Str(allow_none=True, validate=validate.Length(max=100))
    description = fields.Str(required=True, validate=validate.Length(min=1, max=500))
    amount = fields.Decimal(places=2, required=True, validate=validate.Range(min=0))
    date = fields.Date()
    receipt_url = fields.Url(allow_none=True)
