"""
Arrival Lag Weights Module
==========================
Derives how each center's indents historically arrive over time.

Every purchase is attributed to the indent it fulfilled and classified by lag
(purchase date - indent date, whole days):

    D1: lag <= 0    D2: lag = 1    D3: lag = 2    D4: lag >= 3

For each (center, indent date) occurrence the bucket share is
bucket_qty / indent_qty. A center's weight per bucket is the mean of its
occurrence shares over eligible occurrences (indent_qty > 0 and inside the
eligibility window). Means are clamped to [0, 1] and not renormalized.

Weights resolve through three tiers: center -> plant-wide -> zero.
"""

import pandas as pd
import numpy as np
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from business_rules import INDENT_RULES, WEIGHT_KEYS, get_lag_bucket

WEIGHT_SOURCE_CENTER = 'center'
WEIGHT_SOURCE_PLANT = 'plant'
WEIGHT_SOURCE_DEFAULT = 'default'

ZERO_WEIGHTS = {key: 0.0 for key in WEIGHT_KEYS}

OCCURRENCE_COLUMNS = [
    'center_code', 'indent_date', 'indent_qty',
    'd1_qty', 'd2_qty', 'd3_qty', 'd4_qty', 'total_purchased',
    'd1_share', 'd2_share', 'd3_share', 'd4_share',
]


def _empty_records(columns):
    # Typed so that merges on indent_date still line up with datetime keys
    data = {}
    for col in columns:
        if col.endswith('_date'):
            data[col] = pd.Series(dtype='datetime64[ns]')
        elif col == 'center_code':
            data[col] = pd.Series(dtype=object)
        else:
            data[col] = pd.Series(dtype=float)
    return pd.DataFrame(data)


def classify_lag(lag_days: int) -> str:
    """
    Classify a lag in whole days into exactly one bucket.

    Negative lags (purchase dated before its indent) are clamped into D1.
    """
    return get_lag_bucket(lag_days)


def calculate_lag_days(purchase_df: pd.DataFrame) -> pd.Series:
    """Whole days between each purchase and its originating indent."""
    if purchase_df.empty:
        return pd.Series(dtype=int)
    purchase_dates = pd.to_datetime(purchase_df['purchase_date']).dt.normalize()
    indent_dates = pd.to_datetime(purchase_df['indent_date']).dt.normalize()
    return (purchase_dates - indent_dates).dt.days


def bucket_purchases(purchase_df: pd.DataFrame, strict: bool = False) -> pd.DataFrame:
    """
    Sum purchase quantities per (center, indent date) and lag bucket.

    Args:
        purchase_df: Purchase records
        strict: If True, only lags of exactly 0, 1, 2, 3 count (other lags are
                ignored). Used by the full season maturity view.

    Returns:
        DataFrame with center_code, indent_date, d1_qty..d4_qty, total_purchased
    """
    columns = ['center_code', 'indent_date', 'd1_qty', 'd2_qty', 'd3_qty', 'd4_qty', 'total_purchased']
    if purchase_df.empty:
        return _empty_records(columns)

    df = purchase_df[['center_code', 'indent_date', 'qty']].copy()
    df['indent_date'] = pd.to_datetime(df['indent_date']).dt.normalize()
    df['qty'] = df['qty'].astype(float)
    lag = calculate_lag_days(purchase_df).values

    if strict:
        conditions = [lag == 0, lag == 1, lag == 2, lag == 3]
    else:
        conditions = [lag <= 0, lag == 1, lag == 2, lag >= 3]

    for key, condition in zip(WEIGHT_KEYS, conditions):
        df[f'{key}_qty'] = np.where(condition, df['qty'], 0.0)

    bucket_cols = [f'{key}_qty' for key in WEIGHT_KEYS]
    grouped = df.groupby(['center_code', 'indent_date'], as_index=False)[bucket_cols].sum()
    grouped['total_purchased'] = grouped[bucket_cols].sum(axis=1)
    return grouped[columns]


def aggregate_indent_qty(indent_df: pd.DataFrame) -> pd.DataFrame:
    """Total indent quantity per (center, indent date)."""
    if indent_df.empty:
        return _empty_records(['center_code', 'indent_date', 'indent_qty'])
    df = indent_df[['center_code', 'indent_date', 'qty']].copy()
    df['indent_date'] = pd.to_datetime(df['indent_date']).dt.normalize()
    df['qty'] = df['qty'].astype(float)
    return (df.groupby(['center_code', 'indent_date'], as_index=False)['qty'].sum()
              .rename(columns={'qty': 'indent_qty'}))


def _add_shares(occurrences: pd.DataFrame) -> pd.DataFrame:
    # Share is undefined (NaN) when there was no indent quantity to divide by
    for key in WEIGHT_KEYS:
        occurrences[f'{key}_share'] = np.where(
            occurrences['indent_qty'] > 0,
            occurrences[f'{key}_qty'] / occurrences['indent_qty'].where(occurrences['indent_qty'] > 0, 1.0),
            np.nan
        )
    return occurrences


def build_indent_occurrences(indent_df: pd.DataFrame, purchase_df: pd.DataFrame) -> pd.DataFrame:
    """
    Build one occurrence per (center, indent date) that was indented or received purchases.

    Indents with no deliveries are kept with zero bucket quantities (shares
    0/0/0/0). Purchase groups with no recorded indent get indent_qty 0 and an
    undefined share; the eligibility rule excludes them.

    Returns:
        DataFrame with OCCURRENCE_COLUMNS, sorted by center and date
    """
    indents = aggregate_indent_qty(indent_df)
    buckets = bucket_purchases(purchase_df)
    if indents.empty and buckets.empty:
        return _empty_records(OCCURRENCE_COLUMNS)

    occurrences = indents.merge(buckets, on=['center_code', 'indent_date'], how='outer')
    fill_cols = ['indent_qty'] + [f'{key}_qty' for key in WEIGHT_KEYS] + ['total_purchased']
    occurrences[fill_cols] = occurrences[fill_cols].fillna(0.0).astype(float)
    occurrences = _add_shares(occurrences)
    return occurrences[OCCURRENCE_COLUMNS].sort_values(['center_code', 'indent_date']).reset_index(drop=True)


def is_eligible_occurrence(indent_qty, indent_date=None, current_date=None,
                           closure_days=None, lookback_days=None) -> bool:
    """
    Eligibility rule for the conditional average.

    An occurrence is eligible when:
    - indent_qty > 0 (otherwise its shares are undefined), and
    - when current_date is given, indent_date <= T - closure_days, and
    - when lookback_days is set, indent_date >= T - lookback_days.
    """
    if pd.isna(indent_qty) or indent_qty <= 0:
        return False
    if current_date is None or indent_date is None:
        return True

    current_date = pd.Timestamp(current_date).normalize()
    indent_date = pd.Timestamp(indent_date).normalize()
    if closure_days is not None and indent_date > current_date - timedelta(days=closure_days):
        return False
    if lookback_days is not None and indent_date < current_date - timedelta(days=lookback_days):
        return False
    return True


def filter_eligible_occurrences(occurrences: pd.DataFrame, current_date=None,
                                closure_days=None, lookback_days=None) -> pd.DataFrame:
    """Vectorized form of is_eligible_occurrence."""
    if occurrences.empty:
        return occurrences.copy()

    mask = occurrences['indent_qty'] > 0
    if current_date is not None:
        current_date = pd.Timestamp(current_date).normalize()
        dates = pd.to_datetime(occurrences['indent_date'])
        if closure_days is not None:
            mask &= dates <= current_date - timedelta(days=closure_days)
        if lookback_days is not None:
            mask &= dates >= current_date - timedelta(days=lookback_days)
    return occurrences[mask].copy()


def clamp_weights(weights: Dict[str, float]) -> Dict[str, float]:
    low, high = INDENT_RULES["weight_bounds"]
    return {key: float(np.clip(weights[key], low, high)) for key in WEIGHT_KEYS}


def average_bucket_shares(occurrences: pd.DataFrame) -> Optional[Dict[str, float]]:
    """
    Mean bucket share across occurrences, clamped to [0, 1].

    Returns:
        {'d1': .., 'd2': .., 'd3': .., 'd4': ..} or None when there are no occurrences
    """
    if occurrences.empty:
        return None
    means = {key: occurrences[f'{key}_share'].mean() for key in WEIGHT_KEYS}
    if any(pd.isna(v) for v in means.values()):
        return None
    return clamp_weights(means)


def estimate_center_weights(
    indent_df: pd.DataFrame,
    purchase_df: pd.DataFrame,
    current_date=None,
    closure_days: Optional[int] = None,
    lookback_days: Optional[int] = None
) -> Tuple[List[str], pd.DataFrame, Optional[Dict[str, float]], pd.DataFrame]:
    """
    Estimate D1-D4 weights per center and plant-wide.

    Args:
        indent_df: Normalized indent records
        purchase_df: Normalized purchase records
        current_date: Run date T (None disables the date window)
        closure_days: Occurrences newer than T - closure_days are excluded
        lookback_days: Occurrences older than T - lookback_days are excluded

    Returns:
        tuple: (logs, center_weights_df, plant_weights, eligible_occurrences)
        - center_weights_df: center_code, d1..d4, occurrences
        - plant_weights: dict, or None when no eligible occurrence exists
    """
    logs = []
    occurrences = build_indent_occurrences(indent_df, purchase_df)
    eligible = filter_eligible_occurrences(occurrences, current_date, closure_days, lookback_days)

    if occurrences.empty:
        excluded_zero = 0
    else:
        excluded_zero = int(((occurrences['indent_qty'] <= 0) & (occurrences['total_purchased'] > 0)).sum())
    if excluded_zero:
        logs.append(f"WARNING: {excluded_zero} purchase groups have no matching indent quantity and were excluded from weights")
    logs.append(f"INFO: {len(eligible)} of {len(occurrences)} indent occurrences eligible for lag weights")

    rows = []
    for center_code, group in eligible.groupby('center_code', sort=True):
        weights = average_bucket_shares(group)
        if weights is None:
            continue
        rows.append({'center_code': center_code, **weights, 'occurrences': len(group)})
    center_weights = pd.DataFrame(rows, columns=['center_code', *WEIGHT_KEYS, 'occurrences'])

    plant_weights = average_bucket_shares(eligible)
    if plant_weights is None:
        logs.append("WARNING: No eligible history; plant-wide weights undefined (all weights default to 0)")
    else:
        logs.append(
            "INFO: Plant-wide weights "
            + ", ".join(f"{key.upper()}={plant_weights[key]:.3f}" for key in WEIGHT_KEYS)
        )

    return logs, center_weights, plant_weights, eligible


def resolve_center_weights(
    center_code: str,
    center_weights: pd.DataFrame,
    plant_weights: Optional[Dict[str, float]]
) -> Tuple[Dict[str, float], str]:
    """
    Three-tier weight resolution.

    Returns:
        tuple: (weights, source) where source is 'center', 'plant' or 'default'
    """
    if not center_weights.empty:
        match = center_weights[center_weights['center_code'] == center_code]
        if not match.empty:
            row = match.iloc[0]
            return {key: float(row[key]) for key in WEIGHT_KEYS}, WEIGHT_SOURCE_CENTER

    if plant_weights is not None:
        return dict(plant_weights), WEIGHT_SOURCE_PLANT

    return dict(ZERO_WEIGHTS), WEIGHT_SOURCE_DEFAULT


def resolve_all_weights(
    center_codes: List[str],
    center_weights: pd.DataFrame,
    plant_weights: Optional[Dict[str, float]]
) -> Tuple[List[str], pd.DataFrame]:
    """
    Resolve weights for every center in center_codes.

    Returns:
        tuple: (logs, weights_df) with center_code, d1..d4, weight_source
    """
    logs = []
    rows = []
    for center_code in center_codes:
        weights, source = resolve_center_weights(center_code, center_weights, plant_weights)
        if source == WEIGHT_SOURCE_PLANT:
            logs.append(f"WARNING: Center {center_code} has no eligible history; using plant-wide weights")
        elif source == WEIGHT_SOURCE_DEFAULT:
            logs.append(f"WARNING: Center {center_code} has no history and no plant-wide weights; weights set to 0")
        rows.append({'center_code': center_code, **weights, 'weight_source': source})

    return logs, pd.DataFrame(rows, columns=['center_code', *WEIGHT_KEYS, 'weight_source'])


# ===== FULL SEASON MATURITY (reporting) =====

def average_positive_ratios(shares: pd.Series) -> float:
    """Average of the ratios that are > 0 (Excel AVERAGEIF(range, ">0")). 0 if none."""
    positive = shares[np.isfinite(shares) & (shares > 0)]
    if positive.empty:
        return 0.0
    return float(positive.mean())


def analyze_full_season_maturity(
    indent_df: pd.DataFrame,
    purchase_df: pd.DataFrame,
    bonding_df: pd.DataFrame,
    plant_start_date=None
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Day-by-day maturity of every indent raised since the plant start date.

    Unlike the weight estimator this view is indent-driven (indents with no
    purchases appear with zero buckets) and strict: only lags of exactly
    0, 1, 2 and 3 days are counted.

    Returns:
        tuple: (season_analysis_df, season_weights_df)
    """
    indents = aggregate_indent_qty(indent_df)
    if plant_start_date is not None and not indents.empty:
        indents = indents[indents['indent_date'] >= pd.Timestamp(plant_start_date).normalize()]

    buckets = bucket_purchases(purchase_df, strict=True)
    if indents.empty:
        analysis = _empty_records(OCCURRENCE_COLUMNS)
    else:
        analysis = indents.merge(buckets, on=['center_code', 'indent_date'], how='left')
        fill_cols = [f'{key}_qty' for key in WEIGHT_KEYS] + ['total_purchased']
        analysis[fill_cols] = analysis[fill_cols].fillna(0.0)
        analysis = _add_shares(analysis)[OCCURRENCE_COLUMNS]

    names = dict(zip(bonding_df['center_code'], bonding_df['center_name'])) if 'center_name' in bonding_df.columns else {}
    analysis = analysis.copy()
    analysis['center_name'] = analysis['center_code'].map(lambda c: names.get(c, 'Unknown'))

    rows = []
    for center_code in bonding_df['center_code']:
        center_rows = analysis[analysis['center_code'] == center_code]
        row = {'center_code': center_code, 'center_name': names.get(center_code, 'Unknown')}
        for key in WEIGHT_KEYS:
            row[key] = average_positive_ratios(center_rows[f'{key}_share'].astype(float))
        rows.append(row)

    season_weights = pd.DataFrame(rows, columns=['center_code', 'center_name', *WEIGHT_KEYS])
    return analysis.sort_values(['center_code', 'indent_date']).reset_index(drop=True), season_weights
