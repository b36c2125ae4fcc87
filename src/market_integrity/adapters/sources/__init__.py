"""Import all source modules to trigger @register decorators."""

from market_integrity.adapters.sources import crypto  # noqa: F401
from market_integrity.adapters.sources import election  # noqa: F401
from market_integrity.adapters.sources import sports  # noqa: F401
from market_integrity.adapters.sources import weather  # noqa: F401
