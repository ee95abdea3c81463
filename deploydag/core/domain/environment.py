"""Domain model for deployment target environments."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Tier(StrEnum):
    """Promotion tier of an environment."""

    DEV = "dev"
    QA = "qa"
    UAT = "uat"
    PROD = "prod"


class TestLevel(StrEnum):
    """Test level a deploy to an environment must run."""

    __test__ = False  # not a pytest test class

    NONE = "none"
    LOCAL = "local"
    FULL = "full"


@dataclass(frozen=True, slots=True)
class Environment:
    """A named deployment target.

    ``credential_ref`` is an opaque handle (an org alias, a vault path) that
    the deploy boundary resolves on its own. The secret itself never passes
    through deploydag.
    """

    id: str
    tier: Tier
    credential_ref: str
    test_level: TestLevel = TestLevel.NONE
    approval_required: bool = False
    description: str = ""

    def __repr__(self) -> str:
        flags = ", approval" if self.approval_required else ""
        return (
            f"Environment('{self.id}', tier={self.tier.value}, "
            f"tests={self.test_level.value}{flags})"
        )
