"""
Configuration Module

Type-safe configuration for the reliability core.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Documented defaults and state enums

Usage:
------
```python
from llm_reliability.core.config import get_settings
from llm_reliability.core.config.constants import CircuitState

settings = get_settings()
ttl = settings.cache.CACHE_DEFAULT_TTL
```

Environment Variables:
---------------------
```bash
POOL_MAX_CONNECTIONS_PER_HOST=20
CACHE_DEFAULT_TTL=300
CB_FAILURE_THRESHOLD=5
WS_MAX_RECONNECTION_ATTEMPTS=5
LOG_LEVEL=INFO
LOG_FORMAT=json
```

Author: System Architect
Date: 2025-12-10
"""

from llm_reliability.core.config.constants import CircuitState
from llm_reliability.core.config.settings import Settings, get_settings, reload_settings

__all__ = [
    "CircuitState",
    "Settings",
    "get_settings",
    "reload_settings",
]
