# Models package: import all models here so Alembic can discover them.

from app.models.membership import Membership  # noqa: F401
from app.models.stripe_event import StripeEvent  # noqa: F401
