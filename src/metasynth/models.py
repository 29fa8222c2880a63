"""Input data models for the meta-analysis engine."""

import math
from enum import Enum

from pydantic import BaseModel, ConfigDict

Number = int | float


class EffectMeasure(str, Enum):
    """Supported effect size measures."""

    OR = "OR"  # Odds Ratio
    RR = "RR"  # Risk Ratio
    RD = "RD"  # Risk Difference
    MD = "MD"  # Mean Difference
    SMD = "SMD"  # Standardized Mean Difference (Hedges' g)

    @property
    def is_ratio(self) -> bool:
        """Ratio measures are pooled on the log scale."""
        return self in (EffectMeasure.OR, EffectMeasure.RR)

    @property
    def is_binary(self) -> bool:
        """Check if the measure is computed from a 2x2 table."""
        return self in (EffectMeasure.OR, EffectMeasure.RR, EffectMeasure.RD)


class PoolingModel(str, Enum):
    """Meta-analysis pooling models."""

    FIXED = "fixed"
    RANDOM = "random"
    AUTO = "auto"


def _is_whole(value: Number) -> bool:
    return isinstance(value, int) or (math.isfinite(value) and float(value).is_integer())


class BinaryOutcome(BaseModel):
    """A 2x2 table of events and totals for treatment and control arms."""

    model_config = ConfigDict(frozen=True)

    events_treatment: Number
    total_treatment: Number
    events_control: Number
    total_control: Number

    def validation_errors(self) -> list[str]:
        """Return every constraint the table violates (empty when valid)."""
        errors: list[str] = []
        arms = (
            ("treatment", self.events_treatment, self.total_treatment),
            ("control", self.events_control, self.total_control),
        )
        for arm, events, total in arms:
            if not math.isfinite(events):
                errors.append(f"Events in {arm} group must be finite")
            elif events < 0:
                errors.append(f"Events in {arm} group cannot be negative")
            if not math.isfinite(total):
                errors.append(f"Total in {arm} group must be finite")
            elif total <= 0:
                errors.append(f"Total in {arm} group must be positive")
            if math.isfinite(events) and math.isfinite(total) and events > total:
                errors.append(f"Events in {arm} group cannot exceed total")
            if not _is_whole(events):
                errors.append(f"Events in {arm} group must be an integer")
            if not _is_whole(total):
                errors.append(f"Total in {arm} group must be an integer")
        return errors

    @property
    def non_events_treatment(self) -> Number:
        return self.total_treatment - self.events_treatment

    @property
    def non_events_control(self) -> Number:
        return self.total_control - self.events_control

    def has_zero_cell(self) -> bool:
        """Check if any of the four cells of the table is zero."""
        return 0 in (
            self.events_treatment,
            self.non_events_treatment,
            self.events_control,
            self.non_events_control,
        )

    def swapped(self) -> "BinaryOutcome":
        """Return the same table with treatment and control arms exchanged."""
        return BinaryOutcome(
            events_treatment=self.events_control,
            total_treatment=self.total_control,
            events_control=self.events_treatment,
            total_control=self.total_treatment,
        )


class ContinuousOutcome(BaseModel):
    """Group summary statistics for a continuous outcome."""

    model_config = ConfigDict(frozen=True)

    mean_t: float
    sd_t: float
    n_t: Number
    mean_c: float
    sd_c: float
    n_c: Number

    def validation_errors(self) -> list[str]:
        """Return every constraint the summary violates (empty when valid)."""
        errors: list[str] = []
        arms = (
            ("treatment", self.mean_t, self.sd_t, self.n_t),
            ("control", self.mean_c, self.sd_c, self.n_c),
        )
        for arm, mean, sd, n in arms:
            if not math.isfinite(mean):
                errors.append(f"Mean in {arm} group must be finite")
            if not math.isfinite(sd):
                errors.append(f"SD in {arm} group must be finite")
            elif sd < 0:
                errors.append(f"SD in {arm} group cannot be negative")
            elif sd == 0:
                errors.append(f"SD in {arm} group cannot be zero")
            if not math.isfinite(n) or n <= 0:
                errors.append(f"Sample size in {arm} group must be positive")
            if not _is_whole(n):
                errors.append(f"Sample size in {arm} group must be an integer")
        return errors


class StudyEffect(BaseModel):
    """A single study's effect estimate as consumed by pooling.

    Either ``standard_error`` or both CI bounds must be given; the SE is
    derived from a 95% CI when it is missing.
    """

    model_config = ConfigDict(frozen=True)

    study_id: str
    effect: float
    standard_error: float | None = None
    ci_lower: float | None = None
    ci_upper: float | None = None
    sample_size: int | None = None

    def validation_errors(self, label: str | None = None) -> list[str]:
        """Return every problem that prevents this study from being pooled."""
        name = label or self.study_id or "?"
        errors: list[str] = []
        if not self.study_id:
            errors.append(f"Study {name}: Missing study_id")
        if not math.isfinite(self.effect):
            errors.append(f"Study {name}: Effect size must be finite")

        lower, upper = self.ci_lower, self.ci_upper
        has_ci = lower is not None and upper is not None
        if self.standard_error is None and not has_ci:
            errors.append(f"Study {name}: Must provide either standard_error or confidence interval")
        if self.standard_error is not None and not (
            math.isfinite(self.standard_error) and self.standard_error > 0
        ):
            errors.append(f"Study {name}: Standard error must be positive and finite")
        if lower is not None and upper is not None:
            if lower > upper:
                errors.append(f"Study {name}: CI lower bound cannot exceed upper bound")
            elif self.standard_error is None and lower == upper:
                errors.append(f"Study {name}: Zero-width confidence interval gives no standard error")
        return errors

    def resolved_se(self) -> float:
        """Standard error, derived from the 95% CI when not given directly."""
        if self.standard_error is not None:
            return self.standard_error
        if self.ci_lower is None or self.ci_upper is None:
            raise ValueError(f"Study {self.study_id}: no standard error or confidence interval to derive one from")
        return (self.ci_upper - self.ci_lower) / (2 * 1.96)


class TreatmentComparison(BaseModel):
    """A direct comparison of two treatments from one study.

    ``effect`` is the effect of ``treatment_b`` relative to ``treatment_a`` on
    an additive scale (log OR, MD, ...), so reversing the arms negates it.
    """

    model_config = ConfigDict(frozen=True)

    study_id: str
    treatment_a: str
    treatment_b: str
    effect: float
    standard_error: float
    sample_size: int | None = None

    def validation_errors(self, label: str | None = None) -> list[str]:
        name = label or self.study_id or "?"
        errors: list[str] = []
        if self.treatment_a == self.treatment_b:
            errors.append(f"Comparison {name}: treatment_a and treatment_b must differ")
        if not math.isfinite(self.effect):
            errors.append(f"Comparison {name}: Effect size must be finite")
        if not (math.isfinite(self.standard_error) and self.standard_error > 0):
            errors.append(f"Comparison {name}: Standard error must be positive and finite")
        return errors

    def involves(self, x: str, y: str) -> bool:
        """Check if this comparison is between x and y in either direction."""
        return {self.treatment_a, self.treatment_b} == {x, y}

    def reversed(self) -> "TreatmentComparison":
        """Return the comparison with its arms swapped and effect negated."""
        return self.model_copy(
            update={
                "treatment_a": self.treatment_b,
                "treatment_b": self.treatment_a,
                "effect": -self.effect,
            }
        )
