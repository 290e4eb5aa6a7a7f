"""Database models package."""
from finance_importer.db.models.category import FinanceCategory, Vendor
from finance_importer.db.models.import_job import ImportJob
from finance_importer.db.models.record import Expense, Income

__all__ = ["FinanceCategory", "Vendor", "ImportJob", "Income", "Expense"]
