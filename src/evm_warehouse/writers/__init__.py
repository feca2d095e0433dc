from .base import DataWriter
from .writer import create_writer

__all__ = ["DataWriter", "create_writer"]
