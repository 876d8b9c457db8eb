from stockflow.models.user import User
from stockflow.models.category import Category, CategoryVisibility
from stockflow.models.product import Product
from stockflow.models.location import Location, ProductLocation
from stockflow.models.movement import Movement
from stockflow.models.loan import Loan
from stockflow.models.sales import Sale, SaleItem
from stockflow.models.audit_log import AuditTrail
