# Models package: import all models here so Alembic can discover them.

from fulfillment.models.counter import Counter  # noqa: F401
from fulfillment.models.order import Order, OrderItem, TrackingEntry  # noqa: F401
from fulfillment.models.webhook_log import WebhookLog  # noqa: F401
from fulfillment.models.audit import AuditEvent  # noqa: F401
