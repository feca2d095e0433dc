from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Set
import logging

import pyarrow as pa

from ..schemas.types import EntitySchema

logger = logging.getLogger(__name__)


class DataWriter(ABC):
    """Base class for warehouse writers"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identity of the target warehouse, used to serialize loads per table"""
        pass

    @abstractmethod
    async def table_exists(self, table_name: str) -> bool:
        pass

    @abstractmethod
    async def max_watermark(self, table_name: str, column: str) -> Optional[datetime]:
        """Latest stored watermark, None when the table is absent or empty"""
        pass

    @abstractmethod
    async def existing_keys(
        self, table_name: str, key: str, candidates: List[str]
    ) -> Set[str]:
        """Subset of `candidates` already stored under `key`"""
        pass

    @abstractmethod
    async def replace_table(
        self, table_name: str, data: pa.Table, schema: EntitySchema
    ) -> None:
        """Rebuild the table from `data`, all or nothing"""
        pass

    @abstractmethod
    async def append(self, table_name: str, data: pa.Table, schema: EntitySchema) -> None:
        """Create the table if needed and append `data`"""
        pass

    async def close(self) -> None:
        pass
