from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass(frozen=True)
class OverridePolicy:
    environment: Environment
    org_override_allowed: bool = True
    lookback_override_allowed: bool = True

    @property
    def allow_org_override(self) -> bool:
        if self.environment != Environment.DEVELOPMENT:
            return False
        return self.org_override_allowed

    @property
    def allow_lookback_override(self) -> bool:
        if self.environment != Environment.DEVELOPMENT:
            return False
        return self.lookback_override_allowed
