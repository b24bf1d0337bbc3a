# installhub/models/partner.py

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from .base import BaseModel, db


class Partner(BaseModel):
    """Third-party company that sends installation jobs."""

    __tablename__ = "partners"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    import_profiles = db.relationship("ImportProfile", back_populates="partner", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Partner {self.name}>"

    @staticmethod
    def find_by_slug(slug):
        """Find partner by slug with error handling"""
        try:
            return Partner.query.filter_by(slug=slug).first()
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding partner by slug {slug}: {str(e)}")
            return None


class Engineer(BaseModel):
    """Installer who can be assigned to orders."""

    __tablename__ = "engineers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    region = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    orders = db.relationship("Order", back_populates="engineer")

    def __repr__(self):
        return f"<Engineer {self.name}>"


class Client(BaseModel):
    """End customer an order is installed for."""

    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    phone = db.Column(db.String(40), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    postcode = db.Column(db.String(20), nullable=True)

    orders = db.relationship("Order", back_populates="client")

    def __repr__(self):
        return f"<Client {self.full_name}>"

    @staticmethod
    def find_by_email(email):
        """Case-insensitive lookup used when linking imported jobs to clients."""
        if not email:
            return None
        return Client.query.filter(func.lower(Client.email) == email.strip().lower()).first()
