"""
Questline configuration package.

Exports the static, environment-driven Config class.
"""

from questline.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
