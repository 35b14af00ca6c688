from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str

    def to_dict(self) -> Dict[str, str]:
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Session"]:
        if not isinstance(data, dict):
            return None
        access = data.get("accessToken")
        refresh = data.get("refreshToken")
        if not access or not refresh:
            return None
        return cls(access_token=str(access), refresh_token=str(refresh))


__all__ = ["Session"]
