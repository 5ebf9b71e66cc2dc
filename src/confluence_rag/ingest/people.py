"""User directory used to resolve ``ri:user`` references to display names."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

LOGGER = logging.getLogger(__name__)


class UserRecord(BaseModel):
    """One entry of the people export."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    account_id: Optional[str] = Field(default=None, alias="accountId")
    display_name: Optional[str] = Field(default=None, alias="displayName")
    email: Optional[str] = None


class UserDirectory:
    """Read-only mapping from account id (or user key) to display name."""

    def __init__(self, display_names: Mapping[str, str] | None = None) -> None:
        self._display_names: Dict[str, str] = dict(display_names or {})

    @classmethod
    def from_records(cls, records: Iterable[UserRecord]) -> "UserDirectory":
        names: Dict[str, str] = {}
        for record in records:
            if record.account_id and record.display_name:
                names[record.account_id] = record.display_name
        return cls(names)

    @classmethod
    def from_file(cls, path: str | Path | None) -> "UserDirectory":
        """Load the directory from a JSON array; missing or bad files give an empty one."""

        if path is None:
            return cls()
        people_path = Path(path)
        if not people_path.is_file():
            LOGGER.info("People file %s not found; user references will not be resolved", people_path)
            return cls()
        try:
            payload = json.loads(people_path.read_text(encoding="utf-8"))
            if not isinstance(payload, list):
                raise ValueError("people file must contain a JSON array")
            records: List[UserRecord] = []
            for item in payload:
                if isinstance(item, dict):
                    records.append(UserRecord.model_validate(item))
        except (OSError, ValueError, ValidationError) as error:
            LOGGER.warning("Failed to load people file %s: %s", people_path, error)
            return cls()
        directory = cls.from_records(records)
        LOGGER.debug("Loaded %s users from %s", len(directory), people_path)
        return directory

    def lookup(self, key: str | None) -> Optional[str]:
        if not key:
            return None
        return self._display_names.get(key)

    def __len__(self) -> int:
        return len(self._display_names)
