from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict
import json

from sqlmodel import Session, select

from rundown_sync.models.tree_node import TreeNode


class TreeNodesRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def load_all(self) -> Dict[str, Any]:
        rows = self.session.exec(select(TreeNode).order_by(TreeNode.key.asc()))
        return {row.key: json.loads(row.value_json) for row in rows if row.value_json}

    def save_many(self, rows: Dict[str, Any]) -> None:
        """Upsert rows in one transaction; a None value deletes the row."""
        for key, value in rows.items():
            row = self.session.get(TreeNode, key)
            if value is None:
                if row is not None:
                    self.session.delete(row)
                continue
            payload = json.dumps(value, ensure_ascii=False)
            if row is None:
                row = TreeNode(key=key, value_json=payload)
            else:
                row.value_json = payload
                row.updated_at = datetime.now(timezone.utc)
            self.session.add(row)
        self.session.commit()
