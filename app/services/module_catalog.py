"""
Module catalog: built-in module definitions, seeding, pricing and dependency
resolution.

Dependencies are always "required" edges: a module cannot be licensed without
every module it depends on, and removing a module takes its dependents with it.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from app.models.module import Module
from app.models.subscription import BillingCycle

logger = logging.getLogger(__name__)

CORE_MODULE_CODES = ["SCHEDULING", "PATIENT360", "CLINICAL", "BILLING"]


@dataclass(frozen=True)
class ModuleDefinition:
    code: str
    name: str
    description: str
    is_core: bool
    monthly_price: Decimal
    yearly_price: Decimal
    dependencies: List[str] = field(default_factory=list)
    display_order: int = 0


MODULE_CATALOG: List[ModuleDefinition] = [
    # Core modules (bundled into every subscription)
    ModuleDefinition(
        code="SCHEDULING",
        name="Scheduling & Appointments",
        description="Appointment calendar, reminders and waitlist",
        is_core=True,
        monthly_price=Decimal("49.99"),
        yearly_price=Decimal("499.99"),
        display_order=1,
    ),
    ModuleDefinition(
        code="PATIENT360",
        name="Patient Management",
        description="Patient profiles, demographics and medical history",
        is_core=True,
        monthly_price=Decimal("39.99"),
        yearly_price=Decimal("399.99"),
        display_order=2,
    ),
    ModuleDefinition(
        code="CLINICAL",
        name="Clinical EHR",
        description="Dental charting, clinical notes and treatment plans",
        is_core=True,
        monthly_price=Decimal("59.99"),
        yearly_price=Decimal("599.99"),
        dependencies=["PATIENT360"],
        display_order=3,
    ),
    ModuleDefinition(
        code="BILLING",
        name="Billing & Payments",
        description="Invoicing, payment processing and statements",
        is_core=True,
        monthly_price=Decimal("49.99"),
        yearly_price=Decimal("499.99"),
        dependencies=["PATIENT360"],
        display_order=4,
    ),
    # Premium add-ons
    ModuleDefinition(
        code="CLINICAL_ADVANCED",
        name="Clinical Documentation (Advanced)",
        description="Advanced perio charting, specialty templates and clinical decision support",
        is_core=False,
        monthly_price=Decimal("79.00"),
        yearly_price=Decimal("790.00"),
        dependencies=["CLINICAL"],
        display_order=5,
    ),
    ModuleDefinition(
        code="IMAGING",
        name="Imaging & DICOM",
        description="X-ray and intraoral imaging with DICOM integration",
        is_core=False,
        monthly_price=Decimal("99.00"),
        yearly_price=Decimal("990.00"),
        dependencies=["CLINICAL", "PATIENT360"],
        display_order=6,
    ),
    ModuleDefinition(
        code="INVENTORY",
        name="Inventory Management",
        description="Supplies, equipment and stock level tracking",
        is_core=False,
        monthly_price=Decimal("69.00"),
        yearly_price=Decimal("690.00"),
        display_order=7,
    ),
    ModuleDefinition(
        code="MARKETING",
        name="Marketing & Patient Engagement",
        description="Campaigns, recalls and patient reviews",
        is_core=False,
        monthly_price=Decimal("89.00"),
        yearly_price=Decimal("890.00"),
        dependencies=["PATIENT360"],
        display_order=8,
    ),
    ModuleDefinition(
        code="INSURANCE",
        name="Insurance Claims",
        description="Eligibility checks, claims submission and remittance",
        is_core=False,
        monthly_price=Decimal("129.00"),
        yearly_price=Decimal("1290.00"),
        dependencies=["BILLING", "PATIENT360"],
        display_order=9,
    ),
    ModuleDefinition(
        code="TELEDENTISTRY",
        name="Teledentistry",
        description="Video consultations and remote triage",
        is_core=False,
        monthly_price=Decimal("59.00"),
        yearly_price=Decimal("590.00"),
        dependencies=["SCHEDULING", "PATIENT360", "CLINICAL"],
        display_order=10,
    ),
    ModuleDefinition(
        code="ANALYTICS_ADVANCED",
        name="Advanced Analytics",
        description="Business intelligence dashboards and custom reports",
        is_core=False,
        monthly_price=Decimal("99.00"),
        yearly_price=Decimal("990.00"),
        display_order=11,
    ),
    ModuleDefinition(
        code="MULTI_LOCATION",
        name="Multi-Location Management",
        description="Consolidated management across practice locations",
        is_core=False,
        monthly_price=Decimal("199.00"),
        yearly_price=Decimal("1990.00"),
        display_order=12,
    ),
]


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def get_module_definition(code: str) -> Optional[ModuleDefinition]:
    code = normalize_code(code)
    for definition in MODULE_CATALOG:
        if definition.code == code:
            return definition
    return None


def module_price(module, billing_cycle: BillingCycle) -> Decimal:
    """Price of a module (Module row or ModuleDefinition) for one billing cycle."""
    price = module.monthly_price if billing_cycle == BillingCycle.MONTHLY else module.yearly_price
    return Decimal(str(price)) if price is not None else Decimal("0.00")


def calculate_modules_price(modules: Iterable, billing_cycle: BillingCycle) -> Decimal:
    return sum((module_price(m, billing_cycle) for m in modules), Decimal("0.00"))


def seed_module_catalog(db: Session, definitions: Iterable[ModuleDefinition] = None) -> List[Module]:
    """
    Insert or update catalog rows. Existing rows keep their id so subscription
    rows stay linked. Flushes but does not commit.
    """
    definitions = list(definitions if definitions is not None else MODULE_CATALOG)
    existing = {m.code: m for m in db.query(Module).all()}
    seeded = []
    for definition in definitions:
        row = existing.get(definition.code)
        if row is None:
            row = Module(code=definition.code)
            db.add(row)
            logger.info(f"[CATALOG] Adding module {definition.code}")
        row.name = definition.name
        row.description = definition.description
        row.is_core = definition.is_core
        row.monthly_price = definition.monthly_price
        row.yearly_price = definition.yearly_price
        row.dependencies = list(definition.dependencies)
        row.display_order = definition.display_order
        row.is_available = True
        seeded.append(row)
    db.flush()
    return seeded


class ModuleCatalog:
    """Read access to the modules table plus dependency graph helpers."""

    def __init__(self, db: Session):
        self.db = db

    def list_modules(self, include_unavailable: bool = False) -> List[Module]:
        query = self.db.query(Module)
        if not include_unavailable:
            query = query.filter(Module.is_available.is_(True))
        return query.order_by(Module.display_order, Module.code).all()

    def get_core_modules(self) -> List[Module]:
        return (
            self.db.query(Module)
            .filter(Module.is_core.is_(True), Module.is_available.is_(True))
            .order_by(Module.display_order)
            .all()
        )

    def get_by_ids(self, ids: Iterable) -> List[Module]:
        ids = list(ids)
        if not ids:
            return []
        return (
            self.db.query(Module)
            .filter(Module.id.in_(ids), Module.is_available.is_(True))
            .order_by(Module.display_order)
            .all()
        )

    def get_by_codes(self, codes: Iterable[str]) -> List[Module]:
        codes = [normalize_code(c) for c in codes]
        if not codes:
            return []
        return self.db.query(Module).filter(Module.code.in_(codes)).all()

    def get_by_code(self, code: str) -> Optional[Module]:
        return self.db.query(Module).filter(Module.code == normalize_code(code)).first()

    def resolve_dependencies(self, modules: List[Module], present_codes: Set[str]) -> List[Module]:
        """
        Return `modules` plus every transitively required module that is not
        already in `present_codes`. Order: requested modules first, then the
        dependencies in discovery order.
        """
        resolved: Dict[str, Module] = {m.code: m for m in modules}
        pending = list(modules)
        while pending:
            module = pending.pop(0)
            missing = [
                normalize_code(code)
                for code in (module.dependencies or [])
                if normalize_code(code) not in present_codes and normalize_code(code) not in resolved
            ]
            if not missing:
                continue
            found = {m.code: m for m in self.get_by_codes(missing)}
            for code in missing:
                dependency = found.get(code)
                if dependency is None or not dependency.is_available:
                    logger.warning(f"[CATALOG] Module {module.code} requires unknown module {code}")
                    continue
                resolved[code] = dependency
                pending.append(dependency)
        return list(resolved.values())

    def find_dependents(self, removed_codes: Set[str], active_codes: Set[str]) -> Set[str]:
        """
        Codes of active modules that (transitively) require one of
        `removed_codes`. The removed codes themselves are not included.
        """
        if not active_codes:
            return set()
        graph = {m.code: {normalize_code(c) for c in (m.dependencies or [])} for m in self.get_by_codes(active_codes)}
        gone = set(removed_codes)
        dependents: Set[str] = set()
        changed = True
        while changed:
            changed = False
            for code, requires in graph.items():
                if code in gone or code in dependents:
                    continue
                if requires & (gone | dependents):
                    dependents.add(code)
                    changed = True
        return dependents
