from routes.health import health_bp
from routes.catalog import catalog_bp
from routes.booking import booking_bp
from routes.account import account_bp
from routes.content import content_bp
from routes.admin import admin_bp
from routes.stripe_webhook import webhook_bp
from routes.pay_pages import pay_pages_bp
