"""
API v1 Routes - REST endpoints for businesses, clients, invoices, estimates,
receipts and expenses. Creation of every metered resource is gated by the
user's plan limits.
"""
from datetime import date

from flask import request, jsonify, current_app
from marshmallow import ValidationError
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from app.blueprints.api import api_bp
from app.blueprints.api.decorators import jwt_required
from app.blueprints.api.schemas import (
    BusinessSchema, BusinessCreateSchema,
    ClientSchema, ClientCreateSchema,
    InvoiceSchema, InvoiceCreateSchema,
    EstimateSchema, EstimateCreateSchema,
    ReceiptSchema, ReceiptCreateSchema,
    ExpenseSchema, ExpenseCreateSchema,
)
from app.blueprints.api.helpers import paginate_query, api_error, api_success
from app.decorators.billing import plan_limit_required
from app.extensions import db
from app.models.business import Business
from app.models.client import Client
from app.models.expense import Expense
from app.models.invoices import Invoice, Estimate
from app.models.receipt import Receipt
from app.services.plans import ResourceKind


def _owned(model, object_id, user):
    """Fetch a row of ``model`` owned by ``user`` or None."""
    if object_id is None:
        return None
    return model.query.filter_by(id=object_id, user_id=user.id).first()


def _load(schema):
    """Validate the JSON body. Returns (data, error_response)."""
    payload = request.get_json(silent=True)
    if payload is None:
        return None, api_error('invalid_json', 'Request body must be valid JSON.', 400)
    try:
        return schema.load(payload), None
    except ValidationError as e:
        return None, api_error('validation_error', 'Invalid request data.', 422, details=e.messages)


def _check_parents(user, data):
    """Ensure referenced business/client/invoice belong to the user."""
    if 'business_id' in data and _owned(Business, data['business_id'], user) is None:
        return api_error('not_found', 'Business not found.', 404)

    if 'client_id' in data:
        client = _owned(Client, data['client_id'], user)
        if client is None or client.business_id != data.get('business_id'):
            return api_error('not_found', 'Client not found.', 404)

    if data.get('invoice_id') is not None and _owned(Invoice, data['invoice_id'], user) is None:
        return api_error('not_found', 'Invoice not found.', 404)

    return None


def _create(model, schema_in, schema_out):
    user = request.api_user
    data, error = _load(schema_in)
    if error:
        return error

    error = _check_parents(user, data)
    if error:
        return error

    obj = model(user_id=user.id, **data)
    db.session.add(obj)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f'Error creating {model.__tablename__} for user {user.id}: {e}')
        return api_error('server_error', 'Could not save record.', 500)

    return api_success(schema_out.dump(obj), 201)


def _list(model, schema, order_by):
    query = model.query.filter_by(user_id=request.api_user.id)

    business_id = request.args.get('business_id', type=int)
    if business_id:
        query = query.filter(model.business_id == business_id)

    return jsonify(paginate_query(query.order_by(order_by), schema)), 200


def _get(model, object_id, schema, label):
    obj = _owned(model, object_id, request.api_user)
    if obj is None:
        return api_error('not_found', f'{label} not found.', 404)
    return api_success(schema.dump(obj))


def _delete(model, object_id, label):
    obj = _owned(model, object_id, request.api_user)
    if obj is None:
        return api_error('not_found', f'{label} not found.', 404)

    db.session.delete(obj)
    db.session.commit()
    return '', 204


# ── Businesses ──────────────────────────────────────────────

@api_bp.route('/businesses', methods=['GET'])
@jwt_required
def api_list_businesses():
    """List the current user's businesses."""
    query = Business.query.filter_by(user_id=request.api_user.id).order_by(Business.name)
    return jsonify(paginate_query(query, BusinessSchema())), 200


@api_bp.route('/businesses', methods=['POST'])
@jwt_required
@plan_limit_required(ResourceKind.BUSINESSES)
def api_create_business():
    """Create a business profile."""
    return _create(Business, BusinessCreateSchema(), BusinessSchema())


@api_bp.route('/businesses/<int:business_id>', methods=['GET'])
@jwt_required
def api_get_business(business_id):
    return _get(Business, business_id, BusinessSchema(), 'Business')


@api_bp.route('/businesses/<int:business_id>', methods=['DELETE'])
@jwt_required
def api_delete_business(business_id):
    return _delete(Business, business_id, 'Business')


# ── Clients ─────────────────────────────────────────────────

@api_bp.route('/clients', methods=['GET'])
@jwt_required
def api_list_clients():
    """List clients.

    Query params:
        business_id (int): Filter by business
        page, per_page: Pagination
    """
    return _list(Client, ClientSchema(), Client.name)


@api_bp.route('/clients', methods=['POST'])
@jwt_required
@plan_limit_required(ResourceKind.CLIENTS)
def api_create_client():
    return _create(Client, ClientCreateSchema(), ClientSchema())


@api_bp.route('/clients/<int:client_id>', methods=['GET'])
@jwt_required
def api_get_client(client_id):
    return _get(Client, client_id, ClientSchema(), 'Client')


@api_bp.route('/clients/<int:client_id>', methods=['DELETE'])
@jwt_required
def api_delete_client(client_id):
    return _delete(Client, client_id, 'Client')


# ── Invoices ────────────────────────────────────────────────

@api_bp.route('/invoices', methods=['GET'])
@jwt_required
def api_list_invoices():
    """List invoices, most recent first."""
    return _list(Invoice, InvoiceSchema(), desc(Invoice.issue_date))


@api_bp.route('/invoices', methods=['POST'])
@jwt_required
@plan_limit_required(ResourceKind.INVOICES_PER_MONTH)
def api_create_invoice():
    """Create an invoice. Counts against this month's invoice allowance."""
    return _create(Invoice, InvoiceCreateSchema(), InvoiceSchema())


@api_bp.route('/invoices/<int:invoice_id>', methods=['GET'])
@jwt_required
def api_get_invoice(invoice_id):
    return _get(Invoice, invoice_id, InvoiceSchema(), 'Invoice')


@api_bp.route('/invoices/<int:invoice_id>', methods=['DELETE'])
@jwt_required
def api_delete_invoice(invoice_id):
    return _delete(Invoice, invoice_id, 'Invoice')


# ── Estimates ───────────────────────────────────────────────

@api_bp.route('/estimates', methods=['GET'])
@jwt_required
def api_list_estimates():
    return _list(Estimate, EstimateSchema(), desc(Estimate.issue_date))


@api_bp.route('/estimates', methods=['POST'])
@jwt_required
@plan_limit_required(ResourceKind.ESTIMATES)
def api_create_estimate():
    return _create(Estimate, EstimateCreateSchema(), EstimateSchema())


@api_bp.route('/estimates/<int:estimate_id>', methods=['GET'])
@jwt_required
def api_get_estimate(estimate_id):
    return _get(Estimate, estimate_id, EstimateSchema(), 'Estimate')


@api_bp.route('/estimates/<int:estimate_id>', methods=['DELETE'])
@jwt_required
def api_delete_estimate(estimate_id):
    return _delete(Estimate, estimate_id, 'Estimate')


# ── Receipts ────────────────────────────────────────────────

@api_bp.route('/receipts', methods=['GET'])
@jwt_required
def api_list_receipts():
    return _list(Receipt, ReceiptSchema(), desc(Receipt.date))


@api_bp.route('/receipts', methods=['POST'])
@jwt_required
@plan_limit_required(ResourceKind.RECEIPTS)
def api_create_receipt():
    return _create(Receipt, ReceiptCreateSchema(), ReceiptSchema())


@api_bp.route('/receipts/<int:receipt_id>', methods=['GET'])
@jwt_required
def api_get_receipt(receipt_id):
    return _get(Receipt, receipt_id, ReceiptSchema(), 'Receipt')


@api_bp.route('/receipts/<int:receipt_id>', methods=['DELETE'])
@jwt_required
def api_delete_receipt(receipt_id):
    return _delete(Receipt, receipt_id, 'Receipt')


# ── Expenses ────────────────────────────────────────────────

@api_bp.route('/expenses', methods=['GET'])
@jwt_required
def api_list_expenses():
    """List expenses.

    Query params:
        business_id (int): Filter by business
        from, to (YYYY-MM-DD): Date range (inclusive)
    """
    query = Expense.query.filter_by(user_id=request.api_user.id)

    business_id = request.args.get('business_id', type=int)
    if business_id:
        query = query.filter(Expense.business_id == business_id)

    try:
        date_from = request.args.get('from')
        if date_from:
            query = query.filter(Expense.date >= date.fromisoformat(date_from))
        date_to = request.args.get('to')
        if date_to:
            query = query.filter(Expense.date <= date.fromisoformat(date_to))
    except ValueError:
        return api_error('invalid_filter', 'Dates must be YYYY-MM-DD.', 422)

    return jsonify(paginate_query(query.order_by(desc(Expense.date)), ExpenseSchema())), 200


@api_bp.route('/expenses', methods=['POST'])
@jwt_required
@plan_limit_required(ResourceKind.EXPENSES)
def api_create_expense():
    return _create(Expense, ExpenseCreateSchema(), ExpenseSchema())


@api_bp.route('/expenses/<int:expense_id>', methods=['GET'])
@jwt_required
def api_get_expense(expense_id):
    return _get(Expense, expense_id, ExpenseSchema(), 'Expense')


@api_bp.route('/expenses/<int:expense_id>', methods=['DELETE'])
@jwt_required
def api_delete_expense(expense_id):
    return _delete(Expense, expense_id, 'Expense')
