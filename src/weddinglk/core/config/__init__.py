"""
Configuration management subsystem for the WeddingLK cache.

Architecture
------------
- **config.py**: Static configuration from environment variables
- **manager.py**: YAML-backed cache tunables with dot-notation access
- **errors.py**: Configuration exception hierarchy

Usage Examples
--------------
```python
from weddinglk.core.config import Config, ConfigManager

redis_url = Config.REDIS_URL
memory_ttl = ConfigManager.get("cache.tiers.memory.ttl_seconds", 300)
```
"""

from weddinglk.core.config.config import Config, Environment
from weddinglk.core.config.errors import ConfigError, ConfigValidationError
from weddinglk.core.config.manager import ConfigManager

__all__ = [
    "Config",
    "Environment",
    "ConfigManager",
    "ConfigError",
    "ConfigValidationError",
]
