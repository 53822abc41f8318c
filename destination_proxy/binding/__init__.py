from .binder import bind
from .platform import AuthContext, CloudFoundryPlatform, Platform

__all__ = ["bind", "AuthContext", "CloudFoundryPlatform", "Platform"]
