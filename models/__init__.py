from .tenant import Tenant  # noqa: F401
from .subscription_event import SubscriptionEvent  # noqa: F401
