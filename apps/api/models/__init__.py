"""Models package."""

from .user import User
from .connection import Connection
from .memory import Memory
