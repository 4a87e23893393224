# compensation_system/config/tiers.py
"""
Tier catalog - typed, versioned tier definitions and constants.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Dict, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class TierId(IntEnum):
    """Stable tier identifier. Higher value ranks higher."""
    ASSOCIATE = 1
    PROFESSIONAL = 2
    SENIOR = 3
    MANAGER = 4
    DIRECTOR = 5
    EXECUTIVE = 6
    AMBASSADOR = 7


class RateTable(Enum):
    ENROLLMENT = "enrollment"
    RECURRING = "recurring"


# Monetary event type -> rate table used for its commissions
EVENT_RATE_TABLES = {
    "registration": RateTable.ENROLLMENT,
    "investment": RateTable.ENROLLMENT,
    "subscription": RateTable.RECURRING,
    "package_purchase": RateTable.RECURRING,
}

ENROLLMENT_RATES = (Decimal("15"), Decimal("10"), Decimal("8"), Decimal("6"),
                    Decimal("4"), Decimal("3"), Decimal("2"))
RECURRING_RATES = (Decimal("12"), Decimal("6"), Decimal("4"), Decimal("2"),
                   Decimal("1"), Decimal("1"), Decimal("1"))


@dataclass(frozen=True)
class TierDefinition:
    tierId: TierId
    name: str
    minimumInvestment: Decimal
    # Percent per level 1..7, None where the tier earns nothing at that level
    referralRates: Dict[RateTable, Tuple[Optional[Decimal], ...]] = field(compare=False)
    requiredActiveReferrals: int = 0
    requiredTeamVolume: Decimal = Decimal("0")
    consecutiveMonthsRequired: int = 1
    profitMultiplier: Decimal = Decimal("1.00")
    withdrawalPenaltyReduction: Decimal = Decimal("0")

    def rateFor(self, table: RateTable, level: int) -> Optional[Decimal]:
        """Percent earned at ancestor distance `level`, None when ineligible."""
        rates = self.referralRates.get(table, ())
        if level < 1 or level > len(rates):
            return None
        rate = rates[level - 1]
        if rate is None or rate <= 0:
            return None
        return rate


class TierCatalog:
    """Immutable set of tier definitions under one version number."""

    def __init__(self, version: int, tiers):
        self.version = version
        self._tiers: Dict[TierId, TierDefinition] = {t.tierId: t for t in tiers}

    def get(self, tierId) -> TierDefinition:
        try:
            return self._tiers[TierId(tierId)]
        except (ValueError, KeyError):
            raise KeyError(f"Tier {tierId} not defined in catalog v{self.version}")

    def multiplier(self, tierId) -> Decimal:
        return self.get(tierId).profitMultiplier

    @property
    def lowest(self) -> TierDefinition:
        return self._tiers[min(self._tiers)]

    def all(self):
        return [self._tiers[key] for key in sorted(self._tiers)]

    def __contains__(self, tierId) -> bool:
        try:
            return TierId(tierId) in self._tiers
        except ValueError:
            return False

    def __repr__(self):
        return f"<TierCatalog(version={self.version}, tiers={len(self._tiers)})>"


def _eligibleRates(rates, tierId: TierId):
    # Rank R earns on levels 1..R
    return tuple(rate if level <= int(tierId) else None
                 for level, rate in enumerate(rates, start=1))


def _buildDefaultTiers():
    rows = [
        # tierId, name, min investment, referrals, team volume, months, multiplier, reduction
        (TierId.ASSOCIATE, "Associate", "500", 0, "0", 1, "1.00", "0"),
        (TierId.PROFESSIONAL, "Professional", "1000", 3, "5000", 3, "1.03", "0.05"),
        (TierId.SENIOR, "Senior", "2500", 9, "15000", 3, "1.06", "0.05"),
        (TierId.MANAGER, "Manager", "5000", 27, "50000", 3, "1.10", "0.10"),
        (TierId.DIRECTOR, "Director", "10000", 81, "150000", 6, "1.15", "0.10"),
        (TierId.EXECUTIVE, "Executive", "25000", 243, "500000", 6, "1.20", "0.15"),
        (TierId.AMBASSADOR, "Ambassador", "50000", 729, "1500000", 12, "1.25", "0.20"),
    ]

    tiers = []
    for tierId, name, minimum, referrals, volume, months, multiplier, reduction in rows:
        tiers.append(TierDefinition(
            tierId=tierId,
            name=name,
            minimumInvestment=Decimal(minimum),
            referralRates={
                RateTable.ENROLLMENT: _eligibleRates(ENROLLMENT_RATES, tierId),
                RateTable.RECURRING: _eligibleRates(RECURRING_RATES, tierId),
            },
            requiredActiveReferrals=referrals,
            requiredTeamVolume=Decimal(volume),
            consecutiveMonthsRequired=months,
            profitMultiplier=Decimal(multiplier),
            withdrawalPenaltyReduction=Decimal(reduction),
        ))
    return tiers


DEFAULT_CATALOG_VERSION = 1
DEFAULT_CATALOG = TierCatalog(DEFAULT_CATALOG_VERSION, _buildDefaultTiers())

# Historical catalogs stay registered so old records remain reproducible
_CATALOGS: Dict[int, TierCatalog] = {DEFAULT_CATALOG_VERSION: DEFAULT_CATALOG}


def registerCatalog(catalog: TierCatalog):
    """Register a new catalog version. Versions are never replaced."""
    if catalog.version in _CATALOGS and _CATALOGS[catalog.version] is not catalog:
        raise ValueError(f"Catalog version {catalog.version} already registered")
    _CATALOGS[catalog.version] = catalog
    logger.info(f"Tier catalog v{catalog.version} registered")


def getCatalog(version: Optional[int] = None) -> TierCatalog:
    """Catalog by version, latest when version is None."""
    if version is None:
        return _CATALOGS[max(_CATALOGS)]
    try:
        return _CATALOGS[version]
    except KeyError:
        raise KeyError(f"Tier catalog v{version} not registered")
