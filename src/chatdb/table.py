"""
Table handler bound to one table name
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence


class TableHandler:
    def __init__(self, db, name: str):
        self.db = db
        self.name = name

    async def insert(self, doc: Mapping[str, Any]):
        return await self.db.insert(doc, self.name)

    async def insert_many(self, docs: Sequence[Mapping[str, Any]], options=None):
        return await self.db.insert_many(docs, self.name, options)

    async def find(self, filter: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self.db.find(filter, self.name)

    async def find_one(self, filter: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        return await self.db.find_one(filter, self.name)

    async def find_by_id(self, doc_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.find_by_id(doc_id, self.name)

    async def update(self, filter: Optional[Mapping[str, Any]], patch: Mapping[str, Any], options=None):
        return await self.db.update(filter, patch, self.name, options)

    async def update_by_id(self, doc_id: str, patch: Mapping[str, Any], options=None):
        return await self.db.update_by_id(doc_id, patch, self.name, options)

    async def delete(self, filter: Optional[Mapping[str, Any]]):
        return await self.db.delete(filter, self.name)

    async def delete_by_id(self, doc_id: str):
        return await self.db.delete_by_id(doc_id, self.name)

    async def delete_all(self):
        return await self.db.delete_all(self.name)

    async def count(self, filter: Optional[Mapping[str, Any]] = None) -> int:
        return await self.db.count(filter, self.name)
