"""Models package."""

from .account import Account
from .plan import Plan
from .subscription import Subscription
from .credit_transaction import CreditTransaction
from .processed_webhook_event import ProcessedWebhookEvent
from .generation_job import GenerationJob
from .public_tryon_log import PublicTryOnLog
from .public_quota_window import PublicQuotaWindow
