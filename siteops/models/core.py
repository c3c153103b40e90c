"""
Core Models: companies, contacts, sites, employees.

Shared master data referenced by every module: stock orders ship to a
Site, toolbox talks are assigned to Employees, proposals are addressed
to a Company and its Contacts.
"""

from siteops.models import db
from siteops.models.base import TenantModel
from siteops.models.soft_delete import SoftDeleteMixin


class Company(SoftDeleteMixin, TenantModel):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    company_code = db.Column(db.String(50), nullable=False)
    company_name = db.Column(db.String(200), nullable=False)
    trading_name = db.Column(db.String(200))
    company_type = db.Column(db.String(50), default="Customer")  # Customer, Supplier, Subcontractor
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    address = db.Column(db.Text)
    vat_number = db.Column(db.String(50))
    is_active = db.Column(db.Boolean, default=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "company_code", name="uq_company_tenant_code"),
    )

    contacts = db.relationship("Contact", back_populates="company", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "company_code": self.company_code,
            "company_name": self.company_name,
            "trading_name": self.trading_name,
            "company_type": self.company_type,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "vat_number": self.vat_number,
            "is_active": self.is_active,
            "contact_count": self.contacts.filter_by(deleted_at=None).count(),
            **self._audit_dict(),
        }


class Contact(SoftDeleteMixin, TenantModel):
    __tablename__ = "contacts"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    job_title = db.Column(db.String(100))
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    is_primary = db.Column(db.Boolean, default=False)

    company = db.relationship("Company", back_populates="contacts")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "company_name": self.company.company_name if self.company else None,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "job_title": self.job_title,
            "email": self.email,
            "phone": self.phone,
            "is_primary": self.is_primary,
            **self._audit_dict(),
        }


class Site(SoftDeleteMixin, TenantModel):
    __tablename__ = "sites"

    id = db.Column(db.Integer, primary_key=True)
    site_code = db.Column(db.String(50), nullable=False)
    site_name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.Text)
    city = db.Column(db.String(100))
    postal_code = db.Column(db.String(20))
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True)
    site_manager_id = db.Column(db.Integer, nullable=True)  # employees.id, not enforced
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    is_active = db.Column(db.Boolean, default=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "site_code", name="uq_site_tenant_code"),
    )

    company = db.relationship("Company")

    def to_dict(self):
        return {
            "id": self.id,
            "site_code": self.site_code,
            "site_name": self.site_name,
            "address": self.address,
            "city": self.city,
            "postal_code": self.postal_code,
            "company_id": self.company_id,
            "site_manager_id": self.site_manager_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "is_active": self.is_active,
            **self._audit_dict(),
        }


class Employee(SoftDeleteMixin, TenantModel):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    employee_code = db.Column(db.String(50), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    job_title = db.Column(db.String(100))
    department = db.Column(db.String(100))
    primary_site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    preferred_language = db.Column(db.String(10), default="en")
    start_date = db.Column(db.Date)
    is_active = db.Column(db.Boolean, default=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "employee_code", name="uq_employee_tenant_code"),
    )

    primary_site = db.relationship("Site", foreign_keys=[primary_site_id])

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            "id": self.id,
            "employee_code": self.employee_code,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "job_title": self.job_title,
            "department": self.department,
            "primary_site_id": self.primary_site_id,
            "primary_site_name": self.primary_site.site_name if self.primary_site else None,
            "user_id": self.user_id,
            "preferred_language": self.preferred_language,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "is_active": self.is_active,
            **self._audit_dict(),
        }
