"""
Section capacity planning.

Offline, read-only analysis that turns current enrollment and waitlist
demand into advisory section-count recommendations per course. Nothing in
this module writes to the store.
"""

import math
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

import pandas as pd

from ..config import get_setting
from ..core import get_logger, log_performance
from ..data.database_manager import DatabaseManager
from ..models import (
    FactorImpact,
    FeasibilityFactor,
    ImplementationTimeline,
    PlanPriority,
    ResourceRequirement,
    SectionOptimizationResult,
    SectionPlan,
    SectionPlanningData,
    TimelineBucket,
)
from ..utils import utc_now

INSTRUCTOR_AVAILABILITY = "Instructor Availability"
CLASSROOM_AVAILABILITY = "Classroom Availability"
DEMAND_TREND = "Demand Trend"
BUDGET_IMPACT = "Budget Impact"

# Classes per instructor that still leave room for another section
OPTIMAL_INSTRUCTOR_LOAD = 4
DEFAULT_INSTRUCTOR_AVAILABILITY = 0.5

TREND_MIN_ENROLLMENTS = 10
TREND_MIN_MONTHS = 6
TREND_LOOKBACK = timedelta(days=730)


class SectionPlanner:
    """Advisory planner for department section counts."""

    def __init__(
        self,
        store: DatabaseManager,
        optimal_utilization: Optional[float] = None,
        cost_per_section: Optional[float] = None,
        classroom_availability: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.optimal_utilization = optimal_utilization or get_setting(
            "planning", "optimal_utilization", 0.85
        )
        self.cost_per_section = (
            cost_per_section
            if cost_per_section is not None
            else get_setting("planning", "cost_per_section", 15000)
        )
        self.classroom_availability = (
            classroom_availability
            if classroom_availability is not None
            else get_setting("planning", "classroom_availability", 0.6)
        )
        self.clock = clock or utc_now
        self.logger = get_logger(__name__)

    # =========================================================================
    # Demand analysis
    # =========================================================================

    @staticmethod
    def calculate_demand_score(enrollment: int, waitlist: int, capacity: int) -> float:
        total_demand = enrollment + waitlist
        utilization_factor = enrollment / capacity if capacity > 0 else 1
        waitlist_factor = math.log(waitlist + 1) if waitlist > 0 else 0
        return round(total_demand * utilization_factor + waitlist_factor * 10, 2)

    @log_performance
    def analyze_department_capacity_needs(
        self, department_id: str
    ) -> List[SectionPlanningData]:
        """
        Aggregate every class of a department by course.

        Returns:
            Planning data per course, highest demand score first
        """
        sections = self.store.get_department_sections_frame(department_id)
        if sections.empty:
            self.logger.info(f"No classes found for department {department_id}")
            return []

        grouped = (
            sections.groupby("course_code", sort=False)
            .agg(
                course_name=("name", "first"),
                current_sections=("class_id", "count"),
                total_capacity=("capacity", "sum"),
                total_enrollment=("current_enrollment", "sum"),
                total_waitlist=("waitlist_count", "sum"),
            )
            .reset_index()
        )

        planning_data = []
        for row in grouped.itertuples(index=False):
            capacity = int(row.total_capacity)
            enrollment = int(row.total_enrollment)
            waitlist = int(row.total_waitlist)
            planning_data.append(
                SectionPlanningData(
                    course_code=row.course_code,
                    course_name=row.course_name,
                    current_sections=int(row.current_sections),
                    total_capacity=capacity,
                    total_enrollment=enrollment,
                    total_waitlist=waitlist,
                    utilization=enrollment / capacity if capacity > 0 else 0.0,
                    demand_score=self.calculate_demand_score(enrollment, waitlist, capacity),
                )
            )

        planning_data.sort(key=lambda data: data.demand_score, reverse=True)
        return planning_data

    # =========================================================================
    # Plans
    # =========================================================================

    @log_performance
    def generate_section_plans(self, department_id: str) -> List[SectionPlan]:
        """One plan per course, high priority first."""
        capacity_data = self.analyze_department_capacity_needs(department_id)
        if not capacity_data:
            return []

        instructor_availability = self.check_instructor_availability(department_id)
        plans = [
            self._create_section_plan(data, department_id, instructor_availability)
            for data in capacity_data
        ]
        plans.sort(key=lambda plan: plan.priority.rank, reverse=True)
        return plans

    def _create_section_plan(
        self,
        data: SectionPlanningData,
        department_id: str,
        instructor_availability: float,
    ) -> SectionPlan:
        average_capacity = data.total_capacity / data.current_sections

        if average_capacity > 0:
            recommended_capacity = math.ceil(data.total_demand / self.optimal_utilization)
            recommended_sections = math.ceil(recommended_capacity / average_capacity)
        else:
            recommended_sections = data.current_sections

        reasoning: List[str] = []
        priority = PlanPriority.MEDIUM
        if data.utilization > 0.95 or data.total_waitlist > data.total_capacity * 0.2:
            priority = PlanPriority.HIGH
            reasoning.append("High utilization or significant waitlist indicates urgent need")
        elif data.utilization < 0.5 and data.current_sections > 1:
            priority = PlanPriority.LOW
            reasoning.append("Low utilization suggests potential for section consolidation")

        if recommended_sections > data.current_sections:
            reasoning.append(
                f"Increase from {data.current_sections} to {recommended_sections} "
                "sections to meet demand"
            )
        elif recommended_sections < data.current_sections:
            reasoning.append(
                f"Consider reducing from {data.current_sections} to "
                f"{recommended_sections} sections"
            )
        else:
            reasoning.append("Current section count appears optimal")

        capacity_per_section = round(average_capacity)
        return SectionPlan(
            course_code=data.course_code,
            course_name=data.course_name,
            recommended_sections=recommended_sections,
            current_sections=data.current_sections,
            capacity_per_section=capacity_per_section,
            total_recommended_capacity=recommended_sections * capacity_per_section,
            priority=priority,
            estimated_cost=self.calculate_estimated_cost(
                recommended_sections - data.current_sections
            ),
            reasoning=reasoning,
            feasibility_factors=self._assess_feasibility_factors(
                data, department_id, instructor_availability
            ),
        )

    def calculate_estimated_cost(self, additional_sections: int) -> float:
        return max(0, additional_sections * self.cost_per_section)

    # =========================================================================
    # Feasibility
    # =========================================================================

    def _assess_feasibility_factors(
        self,
        data: SectionPlanningData,
        department_id: str,
        instructor_availability: float,
    ) -> List[FeasibilityFactor]:
        if instructor_availability > 0.7:
            instructor_impact = FactorImpact.POSITIVE
        elif instructor_availability > 0.4:
            instructor_impact = FactorImpact.NEUTRAL
        else:
            instructor_impact = FactorImpact.NEGATIVE

        if self.classroom_availability > 0.6:
            classroom_impact = FactorImpact.POSITIVE
        elif self.classroom_availability > 0.3:
            classroom_impact = FactorImpact.NEUTRAL
        else:
            classroom_impact = FactorImpact.NEGATIVE

        trend = self.analyze_demand_trend(data.course_code, department_id)
        if trend > 0.1:
            trend_impact = FactorImpact.POSITIVE
        elif trend < -0.1:
            trend_impact = FactorImpact.NEGATIVE
        else:
            trend_impact = FactorImpact.NEUTRAL
        direction = "increasing" if trend > 0 else "decreasing" if trend < 0 else "stable"

        return [
            FeasibilityFactor(
                factor=INSTRUCTOR_AVAILABILITY,
                impact=instructor_impact,
                description=(
                    f"{round(instructor_availability * 100)}% of instructors "
                    "have available capacity"
                ),
                weight=0.4,
            ),
            FeasibilityFactor(
                factor=CLASSROOM_AVAILABILITY,
                impact=classroom_impact,
                description=(
                    f"{round(self.classroom_availability * 100)}% of time slots "
                    "have available classrooms"
                ),
                weight=0.3,
            ),
            FeasibilityFactor(
                factor=DEMAND_TREND,
                impact=trend_impact,
                description=f"Demand is {direction}",
                weight=0.2,
            ),
            FeasibilityFactor(
                factor=BUDGET_IMPACT,
                impact=FactorImpact.POSITIVE if data.demand_score > 50 else FactorImpact.NEUTRAL,
                description="High demand courses typically receive budget priority",
                weight=0.1,
            ),
        ]

    def check_instructor_availability(self, department_id: str) -> float:
        """Share of spare teaching load across the department, 0..1."""
        loads = self.store.get_instructor_loads_frame(department_id)
        if loads.empty:
            return DEFAULT_INSTRUCTOR_AVAILABILITY

        average_load = float(loads["class_count"].mean())
        availability = (OPTIMAL_INSTRUCTOR_LOAD - average_load) / OPTIMAL_INSTRUCTOR_LOAD
        return max(0.0, min(1.0, availability))

    def analyze_demand_trend(self, course_code: str, department_id: str) -> float:
        """
        Relative change of monthly enrollments, recent six months against the
        first six, over the last two years. Zero without enough history.
        """
        history = self.store.get_enrollment_history_frame(
            course_code, department_id, self.clock() - TREND_LOOKBACK
        )
        if len(history) < TREND_MIN_ENROLLMENTS:
            return 0.0

        monthly = (
            history["enrolled_at"]
            .dt.strftime("%Y-%m")
            .value_counts()
            .sort_index()
        )
        if len(monthly) < TREND_MIN_MONTHS:
            return 0.0

        recent_avg = monthly.iloc[-TREND_MIN_MONTHS:].mean()
        earlier_avg = monthly.iloc[:TREND_MIN_MONTHS].mean()
        if earlier_avg <= 0:
            return 0.0
        return float((recent_avg - earlier_avg) / earlier_avg)

    @staticmethod
    def calculate_feasibility_score(factors: Sequence[FeasibilityFactor]) -> float:
        """Weight-normalized mean of factor impact scores; 0.5 without weight."""
        total_weight = sum(factor.weight for factor in factors)
        if total_weight <= 0:
            return 0.5
        weighted = sum(factor.impact.score * factor.weight for factor in factors)
        return weighted / total_weight

    # =========================================================================
    # Optimization and rollout
    # =========================================================================

    def optimize_section_plan(self, plan: SectionPlan) -> SectionOptimizationResult:
        """
        Temper a plan by its feasibility and lay out implementation steps.

        Plans scoring below 0.6 keep only half of the proposed increase.
        """
        feasibility_score = self.calculate_feasibility_score(plan.feasibility_factors)
        optimized = SectionPlan(
            course_code=plan.course_code,
            course_name=plan.course_name,
            recommended_sections=plan.recommended_sections,
            current_sections=plan.current_sections,
            capacity_per_section=plan.capacity_per_section,
            total_recommended_capacity=plan.total_recommended_capacity,
            priority=plan.priority,
            estimated_cost=plan.estimated_cost,
            reasoning=list(plan.reasoning),
            feasibility_factors=list(plan.feasibility_factors),
        )
        improvements: List[str] = []
        tradeoffs: List[str] = []
        steps: List[str] = []

        if feasibility_score < 0.6:
            reduction = math.ceil(plan.section_change * 0.5)
            optimized.recommended_sections = max(
                plan.current_sections, plan.recommended_sections - reduction
            )
            optimized.total_recommended_capacity = (
                optimized.recommended_sections * plan.capacity_per_section
            )
            optimized.estimated_cost = self.calculate_estimated_cost(
                optimized.section_change
            )
            improvements.append("Reduced section increase to improve feasibility")
            tradeoffs.append("May not fully meet demand in the short term")

        if plan.priority == PlanPriority.HIGH and optimized.section_change > 0:
            steps.extend(
                [
                    "Phase 1: Add one section to test demand",
                    "Phase 2: Evaluate success and add remaining sections",
                    "Phase 3: Monitor utilization and adjust capacity",
                ]
            )
        elif optimized.section_change < 0:
            steps.extend(
                [
                    "Phase 1: Identify lowest-enrolled section for potential consolidation",
                    "Phase 2: Communicate changes to affected students",
                    "Phase 3: Implement consolidation with student transfer support",
                ]
            )

        for factor in plan.feasibility_factors:
            if factor.impact != FactorImpact.NEGATIVE:
                continue
            if factor.factor == INSTRUCTOR_AVAILABILITY:
                improvements.append(
                    "Consider hiring adjunct instructors or increasing class sizes"
                )
                steps.append("Recruit qualified adjunct instructors")
            elif factor.factor == CLASSROOM_AVAILABILITY:
                improvements.append("Explore online or hybrid delivery options")
                steps.append("Evaluate technology requirements for hybrid delivery")

        return SectionOptimizationResult(
            original_plan=plan,
            optimized_plan=optimized,
            feasibility_score=feasibility_score,
            improvements=improvements,
            tradeoffs=tradeoffs,
            implementation_steps=steps,
        )

    @staticmethod
    def _availability_status(value: float, available_above: float) -> str:
        if value > available_above:
            return "available"
        if value > 0.3:
            return "limited"
        return "unavailable"

    def get_resource_requirements(
        self, plan: SectionPlan, department_id: str
    ) -> List[ResourceRequirement]:
        """Instructors, rooms and budget needed to add the planned sections."""
        additional = plan.section_change
        if additional <= 0:
            return []

        instructor_status = self._availability_status(
            self.check_instructor_availability(department_id), 0.7
        )
        classroom_status = self._availability_status(self.classroom_availability, 0.6)

        return [
            ResourceRequirement(
                type="instructor",
                description=f"{additional} additional instructor(s) needed",
                quantity=additional,
                availability=instructor_status,
                alternative_solutions=[
                    "Hire adjunct instructors",
                    "Increase class sizes",
                    "Use graduate teaching assistants",
                    "Implement team teaching",
                ],
            ),
            ResourceRequirement(
                type="classroom",
                description=f"{additional} additional classroom time slots needed",
                quantity=additional,
                availability=classroom_status,
                alternative_solutions=[
                    "Schedule during off-peak hours",
                    "Use hybrid/online delivery",
                    "Share classrooms with other departments",
                    "Utilize alternative spaces",
                ],
            ),
            ResourceRequirement(
                type="budget",
                description=f"Additional budget for {additional} section(s)",
                quantity=plan.estimated_cost,
                availability="limited",
                alternative_solutions=[
                    "Reallocate from underutilized courses",
                    "Seek additional funding",
                    "Implement cost-sharing with other departments",
                    "Phase implementation over multiple terms",
                ],
            ),
        ]

    def generate_implementation_timeline(
        self, plans: Sequence[SectionPlan]
    ) -> ImplementationTimeline:
        """Bucket plans by urgency and feasibility."""
        buckets: Dict[str, List[SectionPlan]] = {
            "immediate": [],
            "short_term": [],
            "long_term": [],
        }
        for plan in plans:
            score = self.calculate_feasibility_score(plan.feasibility_factors)
            if plan.priority == PlanPriority.HIGH and score > 0.7:
                buckets["immediate"].append(plan)
            elif plan.priority == PlanPriority.HIGH or (
                plan.priority == PlanPriority.MEDIUM and score > 0.5
            ):
                buckets["short_term"].append(plan)
            else:
                buckets["long_term"].append(plan)

        return ImplementationTimeline(
            immediate=TimelineBucket("Next semester", buckets["immediate"]),
            short_term=TimelineBucket("2-3 semesters", buckets["short_term"]),
            long_term=TimelineBucket("1-2 years", buckets["long_term"]),
        )

    def plans_to_frame(self, plans: Sequence[SectionPlan]) -> pd.DataFrame:
        """Tabular view of plans for export or display."""
        return pd.DataFrame(
            [
                {
                    "course_code": plan.course_code,
                    "course_name": plan.course_name,
                    "current_sections": plan.current_sections,
                    "recommended_sections": plan.recommended_sections,
                    "capacity_per_section": plan.capacity_per_section,
                    "priority": plan.priority.label,
                    "estimated_cost": plan.estimated_cost,
                    "feasibility": round(
                        self.calculate_feasibility_score(plan.feasibility_factors), 2
                    ),
                    "factors": "; ".join(
                        f"{factor.factor}: {factor.impact.label}"
                        for factor in plan.feasibility_factors
                    ),
                }
                for plan in plans
            ]
        )
