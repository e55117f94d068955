"""
Business model. A user may run several businesses; clients and documents
belong to one of them.
"""
from datetime import datetime

from app.extensions import db


class Business(db.Model):
    """Business profile (issuer of invoices, estimates and receipts)."""

    __tablename__ = 'businesses'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(120))
    phone = db.Column(db.String(30))
    address = db.Column(db.Text)
    tax_number = db.Column(db.String(50))
    logo_url = db.Column(db.String(500))
    currency = db.Column(db.String(3), nullable=False, default='NGN')

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = db.relationship('User', back_populates='businesses')
    clients = db.relationship('Client', back_populates='business', cascade='all, delete-orphan', lazy='dynamic')

    def __repr__(self):
        return f'<Business {self.name}>'
