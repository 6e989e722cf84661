"""
Indent Planning Module
======================
Daily indent recommendation per collection center.

Pipeline:
1. Normalize center codes (alias table)
2. Estimate D1-D4 arrival lag weights per center (with plant-wide fallback)
3. Estimate plant-wide overrun from purchase vs indent totals
4. Forecast arrivals on T+3 from indents already placed for T..T+2
5. Allocate today's requirement by bonding share, add stock share,
   subtract forecast, correct for overrun, scale by D1

Per center:
    requirement share = requirement x bonding% / 100
    adjusted          = requirement share + bonding share of gate and centre stock
    net               = adjusted - forecast(T+3)
    target arrival    = net / (1 + overrun)        (skipped when overrun <= -1)
    recommended       = target arrival / D1        (unscaled + flagged when D1 = 0)

The engine is a pure function of its inputs: every call builds a fresh
CalculationRun and never mutates a previous one.
"""

import dataclasses
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import pandas as pd
import numpy as np

from business_rules import INDENT_RULES, get_eligibility_window
from center_mapping import normalize_records
from lag_weights import (
    estimate_center_weights, resolve_all_weights, analyze_full_season_maturity,
    WEIGHT_SOURCE_CENTER,
)
from indent_forecasting import (
    calculate_plant_overrun, project_arrivals, build_open_indent_matrix,
    FORECAST_HORIZON_DAYS,
)

# ===== CONSTANTS =====

MIN_OVERRUN = INDENT_RULES["division_safety"]["min_overrun"]
CONSTRAINT_TYPES = INDENT_RULES["constraints"]["types"]
BONDING_TOTAL_TOLERANCE = 0.5  # percentage points

RESULT_COLUMNS = [
    'center_code', 'center_name', 'bonding_pct',
    'd1', 'd2', 'd3', 'd4', 'weight_source',
    'requirement_share', 'stock_adjustment', 'adjusted_requirement',
    'forecast_t3', 'net_requirement', 'target_arrival', 'recommended_indent',
    'd1_fallback_used', 'low_confidence',
]


class IndentInputError(ValueError):
    """Structurally invalid engine input. Raised before any computation."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("Invalid indent calculation input: " + "; ".join(self.problems))


# ===== DATA TYPES =====

@dataclass(frozen=True)
class Constraint:
    """Operational constraint on a date. impact_factor is the fractional reduction (0-1)."""
    date: date
    type: str
    impact_factor: float
    description: str = ''


@dataclass(frozen=True)
class RiskItem:
    date: date
    type: str
    original_value: float
    constrained_value: float
    deficit: float
    message: str


@dataclass(frozen=True)
class CalculationInputs:
    """
    Current-day assumptions for one run.

    Stock quantities are split across the two physical stock points: the
    Gate and the Centre. eligibility_profile picks the lag weight window
    ('default' = all closed history, 'recent' = T-7 .. T-4).
    """
    current_date: date
    plant_capacity: float
    total_daily_requirement: float
    standard_stock_gate: float = 0.0
    standard_stock_centre: float = 0.0
    available_stock_gate: float = 0.0
    available_stock_centre: float = 0.0
    plant_start_date: Optional[date] = None
    constraints: Tuple[Constraint, ...] = ()
    eligibility_profile: str = 'default'

    @property
    def stock_gap_gate(self) -> float:
        return self.standard_stock_gate - self.available_stock_gate

    @property
    def stock_gap_centre(self) -> float:
        return self.standard_stock_centre - self.available_stock_centre


@dataclass(frozen=True)
class RecommendationRow:
    """One center's recommendation. low_confidence marks fallback-derived values."""
    center_code: str
    center_name: str
    bonding_pct: float
    d1: float
    d2: float
    d3: float
    d4: float
    weight_source: str
    requirement_share: float
    stock_adjustment: float
    adjusted_requirement: float
    forecast_t3: float
    net_requirement: float
    target_arrival: float
    recommended_indent: float
    d1_fallback_used: bool = False
    low_confidence: bool = False
    confidence_notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CalculationRun:
    """
    Named, timestamped snapshot of one engine invocation.

    rows and the aggregates are the result table. reports holds derived
    DataFrames (weights, forecast breakdown, open indent matrix, season
    maturity) for display and export.
    """
    name: str
    timestamp: datetime
    inputs: CalculationInputs
    rows: Tuple[RecommendationRow, ...]
    overrun: Optional[float]
    overrun_applied: float
    overrun_correction_skipped: bool
    effective_requirement: float
    total_forecast_t3: float
    total_recommended: float
    risk_analysis: Tuple[RiskItem, ...] = ()
    logs: Tuple[str, ...] = ()
    reports: Mapping[str, pd.DataFrame] = field(default_factory=lambda: MappingProxyType({}), compare=False, repr=False)

    @property
    def current_date(self) -> date:
        return self.inputs.current_date

    @property
    def low_confidence_centers(self) -> List[str]:
        return [row.center_code for row in self.rows if row.low_confidence]

    def get_row(self, center_code: str) -> Optional[RecommendationRow]:
        for row in self.rows:
            if row.center_code == center_code:
                return row
        return None

    def to_dataframe(self) -> pd.DataFrame:
        """Result table, one row per center."""
        records = []
        for row in self.rows:
            record = dataclasses.asdict(row)
            record['confidence_notes'] = '; '.join(row.confidence_notes)
            records.append(record)
        return pd.DataFrame(records, columns=RESULT_COLUMNS + ['confidence_notes'])

    def summary(self) -> Dict[str, object]:
        """Plant-level aggregates."""
        return {
            'name': self.name,
            'current_date': self.current_date,
            'overrun': self.overrun,
            'overrun_applied': self.overrun_applied,
            'effective_requirement': self.effective_requirement,
            'total_forecast_t3': self.total_forecast_t3,
            'total_recommended': self.total_recommended,
            'centers': len(self.rows),
            'low_confidence_centers': len(self.low_confidence_centers),
        }


# ===== VALIDATION =====

def _is_number(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return not math.isnan(float(value)) and not math.isinf(float(value))
    except (TypeError, ValueError):
        return False


def validate_calculation_inputs(inputs: CalculationInputs) -> List[str]:
    """
    Check the run assumptions.

    Returns:
        List of problems (empty when valid)
    """
    problems = []

    if not isinstance(inputs.current_date, date):
        problems.append(f"current_date must be a calendar date, got {inputs.current_date!r}")
    if inputs.plant_start_date is not None and not isinstance(inputs.plant_start_date, date):
        problems.append(f"plant_start_date must be a calendar date, got {inputs.plant_start_date!r}")

    for name in ('plant_capacity', 'total_daily_requirement', 'standard_stock_gate',
                 'standard_stock_centre', 'available_stock_gate', 'available_stock_centre'):
        value = getattr(inputs, name)
        if not _is_number(value):
            problems.append(f"{name} must be a number, got {value!r}")
        elif float(value) < 0:
            problems.append(f"{name} must be >= 0, got {value}")

    if inputs.eligibility_profile not in ('default', 'recent'):
        problems.append(f"eligibility_profile must be 'default' or 'recent', got {inputs.eligibility_profile!r}")

    for constraint in inputs.constraints:
        if constraint.type not in CONSTRAINT_TYPES:
            problems.append(f"constraint type must be one of {CONSTRAINT_TYPES}, got {constraint.type!r}")
        if not isinstance(constraint.date, date):
            problems.append(f"constraint date must be a calendar date, got {constraint.date!r}")
        if not _is_number(constraint.impact_factor) or not 0 <= float(constraint.impact_factor) <= 1:
            problems.append(f"constraint impact_factor must be within 0-1, got {constraint.impact_factor!r}")

    return problems


def _check_columns(df, required, label, problems):
    missing = [col for col in required if col not in df.columns]
    if missing:
        problems.append(f"{label} records are missing required columns: {', '.join(missing)}")
        return False
    return True


def _coerce_codes(df, label, problems):
    codes = df['center_code'].astype(str).str.strip()
    blank = df['center_code'].isna() | codes.isin(['', 'nan', 'None'])
    if blank.any():
        problems.append(f"{label} records have {int(blank.sum())} rows without a center code")
    return codes


def _coerce_quantity(series, label, column, problems, upper=None):
    values = pd.to_numeric(series, errors='coerce')
    bad = values.isna()
    if bad.any():
        problems.append(f"{label} records have {int(bad.sum())} non-numeric '{column}' values")
    if (values < 0).any():
        problems.append(f"{label} records have {int((values < 0).sum())} negative '{column}' values")
    if upper is not None and (values > upper).any():
        problems.append(f"{label} records have {int((values > upper).sum())} '{column}' values above {upper}")
    return values.astype(float)


def _coerce_dates(series, label, column, problems):
    values = pd.to_datetime(series, errors='coerce')
    if values.isna().any():
        problems.append(f"{label} records have {int(values.isna().sum())} unparseable '{column}' values")
    return values.dt.normalize()


def validate_records(
    bonding_df: pd.DataFrame,
    indent_df: pd.DataFrame,
    purchase_df: pd.DataFrame
) -> Tuple[List[str], pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """
    Check record shape and coerce types.

    Returns:
        tuple: (problems, bonding_df, indent_df, purchase_df); the frames are
        typed copies and only meaningful when problems is empty
    """
    problems = []
    bonding = bonding_df.copy()
    indents = indent_df.copy()
    purchases = purchase_df.copy()

    if _check_columns(bonding, ['center_code', 'bonding_pct'], 'Bonding', problems):
        bonding['center_code'] = _coerce_codes(bonding, 'Bonding', problems)
        bonding['bonding_pct'] = _coerce_quantity(bonding['bonding_pct'], 'Bonding', 'bonding_pct', problems, upper=100)
        if 'center_name' not in bonding.columns:
            bonding['center_name'] = bonding['center_code']
        bonding['center_name'] = bonding['center_name'].fillna(bonding['center_code']).astype(str)

    if _check_columns(indents, ['center_code', 'indent_date', 'qty'], 'Indent', problems):
        indents['center_code'] = _coerce_codes(indents, 'Indent', problems)
        indents['indent_date'] = _coerce_dates(indents['indent_date'], 'Indent', 'indent_date', problems)
        indents['qty'] = _coerce_quantity(indents['qty'], 'Indent', 'qty', problems)

    if _check_columns(purchases, ['center_code', 'purchase_date', 'indent_date', 'qty'], 'Purchase', problems):
        purchases['center_code'] = _coerce_codes(purchases, 'Purchase', problems)
        purchases['purchase_date'] = _coerce_dates(purchases['purchase_date'], 'Purchase', 'purchase_date', problems)
        purchases['indent_date'] = _coerce_dates(purchases['indent_date'], 'Purchase', 'indent_date', problems)
        purchases['qty'] = _coerce_quantity(purchases['qty'], 'Purchase', 'qty', problems)

    return problems, bonding, indents, purchases


def consolidate_bonding(bonding_df: pd.DataFrame) -> pd.DataFrame:
    """One row per center (first-seen order); duplicate codes sum their bonding."""
    if bonding_df.empty:
        return pd.DataFrame(columns=['center_code', 'center_name', 'bonding_pct'])

    return bonding_df.groupby('center_code', sort=False).agg(
        center_name=('center_name', 'first'),
        bonding_pct=('bonding_pct', 'sum'),
    ).reset_index()


# ===== CONSTRAINTS =====

def _same_day(a, b) -> bool:
    return pd.Timestamp(a).normalize() == pd.Timestamp(b).normalize()


def apply_constraints(
    inputs: CalculationInputs,
    total_forecast_t3: float
) -> Tuple[List[str], float, List[RiskItem]]:
    """
    Apply operational constraints dated T+3.

    A mill constraint reduces the daily requirement by its impact factor.
    A field constraint leaves the requirement unchanged and only reports the
    projected arrival deficit.

    Returns:
        tuple: (logs, effective_requirement, risk_items)
    """
    logs = []
    risks = []
    t_plus_3 = inputs.current_date + timedelta(days=FORECAST_HORIZON_DAYS)
    effective_requirement = float(inputs.total_daily_requirement)

    mill = next((c for c in inputs.constraints if c.type == 'mill' and _same_day(c.date, t_plus_3)), None)
    if mill is not None:
        original = effective_requirement
        reduction = effective_requirement * mill.impact_factor
        effective_requirement -= reduction
        message = (f"Mill constraint on {t_plus_3:%d/%m/%Y} ({mill.description}) reduced effective "
                   f"requirement by {mill.impact_factor * 100:.0f}%.")
        risks.append(RiskItem(t_plus_3, 'mill', original, effective_requirement, reduction, message))
        logs.append(f"WARNING: {message}")

    field_constraint = next((c for c in inputs.constraints if c.type == 'field' and _same_day(c.date, t_plus_3)), None)
    if field_constraint is not None:
        reduction = total_forecast_t3 * field_constraint.impact_factor
        message = (f"Field constraint on {t_plus_3:%d/%m/%Y} ({field_constraint.description}) is projected "
                   f"to impact arrivals by ~{round(reduction):,} Qtls.")
        risks.append(RiskItem(t_plus_3, 'field', total_forecast_t3, total_forecast_t3 - reduction, reduction, message))
        logs.append(f"WARNING: {message}")

    return logs, effective_requirement, risks


# ===== ALLOCATION =====

def resolve_overrun(overrun: Optional[float]) -> Tuple[float, bool]:
    """
    Overrun used for the correction step.

    Returns:
        tuple: (overrun_applied, skipped); undefined or <= -1 overrun is applied as 0
    """
    if overrun is None:
        return 0.0, True
    if overrun <= MIN_OVERRUN:
        return 0.0, True
    return float(overrun), False


def allocate_center(
    center: Dict,
    weights: Dict,
    forecast_t3: float,
    effective_requirement: float,
    inputs: CalculationInputs,
    overrun_applied: float
) -> RecommendationRow:
    """
    Recommended indent for one center.

    Args:
        center: center_code, center_name, bonding_pct
        weights: d1..d4 and weight_source
        forecast_t3: Projected arrivals on T+3
        effective_requirement: Plant requirement after constraints
        inputs: Run assumptions (stock balances)
        overrun_applied: Overrun for the correction (already made safe)

    Returns:
        RecommendationRow
    """
    share = float(center['bonding_pct']) / 100.0
    requirement_share = effective_requirement * share
    stock_adjustment = share * float(inputs.available_stock_gate) + share * float(inputs.available_stock_centre)
    adjusted = requirement_share + stock_adjustment
    net_requirement = adjusted - forecast_t3
    target_arrival = net_requirement / (1.0 + overrun_applied)

    notes = []
    d1 = float(weights['d1'])
    d1_fallback_used = d1 <= 0
    if d1_fallback_used:
        recommended = target_arrival
        notes.append("D1 weight is 0; recommendation is the unscaled target arrival")
    else:
        recommended = target_arrival / d1

    if weights['weight_source'] != WEIGHT_SOURCE_CENTER:
        notes.append(f"weights from {weights['weight_source']} fallback")

    return RecommendationRow(
        center_code=center['center_code'],
        center_name=center['center_name'],
        bonding_pct=float(center['bonding_pct']),
        d1=d1,
        d2=float(weights['d2']),
        d3=float(weights['d3']),
        d4=float(weights['d4']),
        weight_source=weights['weight_source'],
        requirement_share=requirement_share,
        stock_adjustment=stock_adjustment,
        adjusted_requirement=adjusted,
        forecast_t3=float(forecast_t3),
        net_requirement=net_requirement,
        target_arrival=target_arrival,
        recommended_indent=recommended,
        d1_fallback_used=d1_fallback_used,
        low_confidence=bool(notes),
        confidence_notes=tuple(notes),
    )


def allocate_recommendations(
    bonding_df: pd.DataFrame,
    weights_df: pd.DataFrame,
    forecast_df: pd.DataFrame,
    effective_requirement: float,
    inputs: CalculationInputs,
    overrun_applied: float
) -> Tuple[List[str], List[RecommendationRow]]:
    """
    Recommended indents for every center in the bonding table, in bonding order.

    Returns:
        tuple: (logs, rows)
    """
    logs = []
    weights_by_center = {w['center_code']: w for w in weights_df.to_dict('records')}
    forecast_by_center = dict(zip(forecast_df['center_code'], forecast_df['forecast_t3'])) if not forecast_df.empty else {}

    rows = []
    for center in bonding_df.to_dict('records'):
        weights = weights_by_center[center['center_code']]
        row = allocate_center(
            center, weights, forecast_by_center.get(center['center_code'], 0.0),
            effective_requirement, inputs, overrun_applied
        )
        if row.d1_fallback_used:
            logs.append(f"WARNING: Center {row.center_code} has D1 weight 0; indent left unscaled (low confidence)")
        rows.append(row)

    return logs, rows


# ===== MAIN ENTRY POINT =====

def calculate_recommended_indents(
    bonding_df: pd.DataFrame,
    indent_df: pd.DataFrame,
    purchase_df: pd.DataFrame,
    inputs: CalculationInputs,
    center_mapping: Optional[Dict[str, str]] = None,
    name: Optional[str] = None,
    timestamp: Optional[datetime] = None
) -> CalculationRun:
    """
    Run the indent recommendation engine.

    This is the main entry point for indent planning.

    Args:
        bonding_df: center_code, bonding_pct (0-100), optional center_name
        indent_df: center_code, indent_date, qty
        purchase_df: center_code, purchase_date, indent_date, qty
        inputs: Current-day assumptions
        center_mapping: Optional {alias_code: canonical_code}
        name: Run name (defaults to "Indent <date>")
        timestamp: Creation time (defaults to now)

    Returns:
        CalculationRun

    Raises:
        IndentInputError: structurally invalid records or assumptions
    """
    logs = ["INFO: Starting indent recommendation calculation..."]

    # ===== STEP 1: Validate =====
    problems = validate_calculation_inputs(inputs)
    record_problems, bonding, indents, purchases = validate_records(bonding_df, indent_df, purchase_df)
    problems.extend(record_problems)
    if problems:
        raise IndentInputError(problems)

    current_date = pd.Timestamp(inputs.current_date).normalize()
    run_date = current_date.date()

    # ===== STEP 2: Normalize center codes =====
    mapping_logs, bonding, indents, purchases = normalize_records(bonding, indents, purchases, center_mapping)
    logs.extend(mapping_logs)
    bonding = consolidate_bonding(bonding)

    total_bonding = float(bonding['bonding_pct'].sum()) if not bonding.empty else 0.0
    if bonding.empty:
        logs.append("WARNING: Bonding table is empty; no centers to plan")
    elif abs(total_bonding - 100.0) > BONDING_TOTAL_TOLERANCE:
        logs.append(f"WARNING: Bonding percentages sum to {total_bonding:.2f}, not 100; allocation is proportional as given")

    if 0 < inputs.plant_capacity < inputs.total_daily_requirement:
        logs.append(
            f"WARNING: Daily requirement {inputs.total_daily_requirement:,.0f} exceeds plant capacity {inputs.plant_capacity:,.0f}"
        )
    logs.append(f"INFO: Stock gap Gate {inputs.stock_gap_gate:,.0f}, Centre {inputs.stock_gap_centre:,.0f}")

    # ===== STEP 3: Lag weights =====
    closure_days, lookback_days = get_eligibility_window(
        'recent' if inputs.eligibility_profile == 'recent' else None
    )
    weight_logs, center_weights, plant_weights, eligible = estimate_center_weights(
        indents, purchases, current_date, closure_days, lookback_days
    )
    logs.extend(weight_logs)
    resolve_logs, weights_df = resolve_all_weights(list(bonding['center_code']), center_weights, plant_weights)
    logs.extend(resolve_logs)

    # ===== STEP 4: Overrun =====
    overrun_logs, overrun = calculate_plant_overrun(indents, purchases)
    logs.extend(overrun_logs)
    overrun_applied, overrun_skipped = resolve_overrun(overrun)
    if overrun is not None and overrun_skipped:
        logs.append(f"WARNING: Overrun {overrun:.2f} is <= {MIN_OVERRUN:.0f}; overrun correction skipped")

    # ===== STEP 5: Forecast =====
    forecast_df = project_arrivals(indents, weights_df, current_date)
    total_forecast_t3 = float(forecast_df['forecast_t3'].sum()) if not forecast_df.empty else 0.0
    logs.append(f"INFO: Forecast arrivals on T+3: {total_forecast_t3:,.0f}")

    # ===== STEP 6: Constraints and allocation =====
    constraint_logs, effective_requirement, risks = apply_constraints(
        dataclasses.replace(inputs, current_date=run_date), total_forecast_t3
    )
    logs.extend(constraint_logs)

    allocation_logs, rows = allocate_recommendations(
        bonding, weights_df, forecast_df, effective_requirement, inputs, overrun_applied
    )
    logs.extend(allocation_logs)
    total_recommended = float(sum(row.recommended_indent for row in rows))
    logs.append(f"INFO: Total recommended indent: {total_recommended:,.0f} for {len(rows)} centers")

    # ===== STEP 7: Reports =====
    recommended_map = {row.center_code: row.recommended_indent for row in rows}
    matrix_df, _ = build_open_indent_matrix(indents, purchases, weights_df, current_date, recommended_map)
    season_analysis, season_weights = analyze_full_season_maturity(
        indents, purchases, bonding, inputs.plant_start_date
    )
    reports = MappingProxyType({
        'center_weights': weights_df,
        'eligible_occurrences': eligible,
        'forecast_breakdown': forecast_df,
        'open_indent_matrix': matrix_df,
        'season_analysis': season_analysis,
        'season_weights': season_weights,
    })

    return CalculationRun(
        name=name or f"Indent {run_date:%d/%m/%Y}",
        timestamp=timestamp or datetime.now(),
        inputs=inputs,
        rows=tuple(rows),
        overrun=overrun,
        overrun_applied=overrun_applied,
        overrun_correction_skipped=overrun_skipped,
        effective_requirement=effective_requirement,
        total_forecast_t3=total_forecast_t3,
        total_recommended=total_recommended,
        risk_analysis=tuple(risks),
        logs=tuple(logs),
        reports=reports,
    )


# ===== SCENARIOS =====

def override_inputs(inputs: CalculationInputs, **changes) -> CalculationInputs:
    """
    Copy of inputs with the given fields replaced.

    Raises:
        TypeError: unknown field name
    """
    if 'constraints' in changes:
        changes['constraints'] = tuple(changes['constraints'])
    return dataclasses.replace(inputs, **changes)


def run_scenario(
    base_run: CalculationRun,
    bonding_df: pd.DataFrame,
    indent_df: pd.DataFrame,
    purchase_df: pd.DataFrame,
    name: str,
    center_mapping: Optional[Dict[str, str]] = None,
    **overrides
) -> CalculationRun:
    """
    Re-run the engine with the base run's inputs plus overrides.

    The base run is left untouched; a new CalculationRun is returned.
    """
    scenario_inputs = override_inputs(base_run.inputs, **overrides)
    return calculate_recommended_indents(
        bonding_df, indent_df, purchase_df, scenario_inputs,
        center_mapping=center_mapping, name=name
    )


def compare_runs(base_run: CalculationRun, scenario_run: CalculationRun) -> pd.DataFrame:
    """
    Per-center comparison of recommended indents.

    Returns:
        DataFrame: center_code, base_indent, scenario_indent, delta, delta_pct
    """
    base = {row.center_code: row.recommended_indent for row in base_run.rows}
    scenario = {row.center_code: row.recommended_indent for row in scenario_run.rows}

    rows = []
    for center_code in list(base) + [c for c in scenario if c not in base]:
        base_qty = base.get(center_code, np.nan)
        scenario_qty = scenario.get(center_code, np.nan)
        delta = scenario_qty - base_qty
        delta_pct = np.nan if pd.isna(base_qty) or base_qty == 0 else delta / base_qty * 100
        rows.append({
            'center_code': center_code,
            'base_indent': base_qty,
            'scenario_indent': scenario_qty,
            'delta': delta,
            'delta_pct': delta_pct,
        })

    return pd.DataFrame(rows, columns=['center_code', 'base_indent', 'scenario_indent', 'delta', 'delta_pct'])
