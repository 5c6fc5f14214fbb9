"""
Module: school_services
Responsibility:
    Stateful services over the kernel and engines: balances and payment
    recording, progression rules, promotion criteria, eligibility, promotion
    execution and the academic year roll-over.

Architecture position:
    Services -- may import school_kernel, school_engines and school_config.

Usage:
    from school_services import PromotionWorkflow

    workflow = PromotionWorkflow(session, settings=settings)
    workflow.balances.record_payment(command)
"""

from school_services.balance_service import BalanceService
from school_services.criteria_service import PromotionCriteriaService
from school_services.eligibility_service import EligibilityService
from school_services.fee_structure_service import FeeStructureService
from school_services.performance import (
    AcademicPerformanceProvider,
    StaticPerformanceProvider,
)
from school_services.progression_service import ProgressionService
from school_services.promotion_executor import PromotionExecutor
from school_services.promotion_workflow import PromotionWorkflow
from school_services.year_roller import AcademicYearRoller

__all__ = [
    "AcademicPerformanceProvider",
    "AcademicYearRoller",
    "BalanceService",
    "EligibilityService",
    "FeeStructureService",
    "ProgressionService",
    "PromotionCriteriaService",
    "PromotionExecutor",
    "PromotionWorkflow",
    "StaticPerformanceProvider",
]
