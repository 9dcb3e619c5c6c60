"""Database models for the tour back office"""

from app.models.order import Order
from app.models.woocommerce import WooCommerceCredential, Tour
from app.models.ad_spend import AdSpend
from app.models.sync_status import DataSyncStatus
from app.models.user import User, UserSession
