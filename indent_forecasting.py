"""
Indent Forecasting Module
=========================
Plant-wide overrun estimation and arrival forecasts built on the lag weights.

Key Features:
- Overrun = total purchases / total indents - 1 over the whole history
- T+3 arrival forecast per center from indents already placed for T, T+1, T+2
- Open indent matrix: actual vs forecast arrivals for every open indent
"""

import pandas as pd
import numpy as np
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from business_rules import INDENT_RULES, WEIGHT_KEYS
from lag_weights import calculate_lag_days

# ===== CONSTANTS =====

FORECAST_HORIZON_DAYS = INDENT_RULES["forecast"]["horizon_days"]
FORECAST_CONTRIBUTIONS = INDENT_RULES["forecast"]["contributions"]


def calculate_plant_overrun(indent_df: pd.DataFrame, purchase_df: pd.DataFrame) -> Tuple[List[str], Optional[float]]:
    """
    Plant-wide delivery bias.

    Formula: overrun = sum(purchase qty) / sum(indent qty) - 1

    Positive means the plant historically receives more than it indents.

    Returns:
        tuple: (logs, overrun) where overrun is None when total indent qty is 0
    """
    logs = []
    total_indent = float(indent_df['qty'].sum()) if not indent_df.empty else 0.0
    total_purchase = float(purchase_df['qty'].sum()) if not purchase_df.empty else 0.0

    if total_indent <= 0:
        logs.append("WARNING: Total indent quantity is 0; overrun undefined (treated as 0)")
        return logs, None

    overrun = total_purchase / total_indent - 1
    logs.append(
        f"INFO: Overrun {overrun:+.2%} (purchases {total_purchase:,.0f} / indents {total_indent:,.0f})"
    )
    return logs, overrun


def build_indent_lookup(indent_df: pd.DataFrame) -> Dict[Tuple[str, pd.Timestamp], float]:
    """Summed indent qty keyed by (center_code, indent_date)."""
    if indent_df.empty:
        return {}
    df = indent_df[['center_code', 'indent_date', 'qty']].copy()
    df['indent_date'] = pd.to_datetime(df['indent_date']).dt.normalize()
    totals = df.groupby(['center_code', 'indent_date'])['qty'].sum()
    return {key: float(value) for key, value in totals.items()}


def lookup_indent_qty(indent_lookup: Dict, center_code: str, date) -> float:
    """Indent qty for an exact center and date; 0 when no indent was placed."""
    return indent_lookup.get((center_code, pd.Timestamp(date).normalize()), 0.0)


def project_arrivals(
    indent_df: pd.DataFrame,
    weights_df: pd.DataFrame,
    current_date
) -> pd.DataFrame:
    """
    Project arrivals on T+3 for each center in weights_df.

    Formula:
        forecast = D2 x indent(T+2) + D3 x indent(T+1) + D4 x indent(T)

    The D1 share of T+3 arrivals comes from the indent being calculated now,
    so it contributes nothing to the forecast.

    Args:
        indent_df: Normalized indent records (historical and already placed)
        weights_df: center_code, d1..d4 (resolved weights)
        current_date: Run date T

    Returns:
        DataFrame with one row per center: center_code, per-contribution
        indent date / qty / weight / result for d2..d4, and forecast_t3
    """
    current_date = pd.Timestamp(current_date).normalize()
    indent_lookup = build_indent_lookup(indent_df)

    rows = []
    for weights in weights_df.to_dict('records'):
        center_code = weights['center_code']
        row = {'center_code': center_code}
        forecast = 0.0

        for offset, key in sorted(FORECAST_CONTRIBUTIONS.items(), reverse=True):
            indent_date = current_date + timedelta(days=offset)
            indent_qty = lookup_indent_qty(indent_lookup, center_code, indent_date)
            result = float(weights[key]) * indent_qty
            row[f'{key}_indent_date'] = indent_date
            row[f'{key}_indent_qty'] = indent_qty
            row[f'{key}_weight'] = float(weights[key])
            row[f'{key}_result'] = result
            forecast += result

        row['forecast_t3'] = forecast
        rows.append(row)

    columns = ['center_code']
    for _, key in sorted(FORECAST_CONTRIBUTIONS.items(), reverse=True):
        columns += [f'{key}_indent_date', f'{key}_indent_qty', f'{key}_weight', f'{key}_result']
    columns.append('forecast_t3')
    return pd.DataFrame(rows, columns=columns)


def build_open_indent_matrix(
    indent_df: pd.DataFrame,
    purchase_df: pd.DataFrame,
    weights_df: pd.DataFrame,
    current_date,
    recommended_indents: Dict[str, float]
) -> Tuple[pd.DataFrame, List[pd.Timestamp]]:
    """
    Actual and forecast arrivals for every open indent, T-3 .. T+6.

    Open indents are those dated T-3 .. T+3. The T+3 indent of each center is
    the freshly recommended quantity; any recorded T+3 indent for that center
    is replaced. Dates before T show actual purchases (bucketed by lag, lags of
    3+ days land on indent date + 3); dates from T on show weight x indent qty
    for the four days after the indent.

    Returns:
        tuple: (matrix_df, headers)
        - matrix_df: center_code, indent_date, indent_qty, date, type,
          quantity, weight_label, weight
        - headers: list of dates in the matrix window
    """
    current_date = pd.Timestamp(current_date).normalize()
    rules = INDENT_RULES["open_indent_matrix"]
    headers = [current_date + timedelta(days=d)
               for d in range(rules["start_offset_days"], rules["end_offset_days"] + 1)]
    t_plus_3 = current_date + timedelta(days=FORECAST_HORIZON_DAYS)
    open_start = current_date + timedelta(days=rules["start_offset_days"])

    indent_lookup = build_indent_lookup(indent_df)
    open_indents = {
        key: qty for key, qty in indent_lookup.items()
        if open_start <= key[1] <= t_plus_3
        and not (key[1] == t_plus_3 and key[0] in recommended_indents)
    }
    for center_code, qty in recommended_indents.items():
        open_indents[(center_code, t_plus_3)] = float(qty)

    # Actual arrivals per (center, indent date, arrival bucket date)
    actuals = {}
    if not purchase_df.empty:
        purchases = purchase_df[['center_code', 'indent_date', 'qty']].copy()
        purchases['indent_date'] = pd.to_datetime(purchases['indent_date']).dt.normalize()
        lag = np.clip(calculate_lag_days(purchase_df).values, 0, FORECAST_HORIZON_DAYS)
        purchases['bucket_date'] = purchases['indent_date'] + pd.to_timedelta(lag, unit='D')
        grouped = purchases.groupby(['center_code', 'indent_date', 'bucket_date'])['qty'].sum()
        actuals = {key: float(value) for key, value in grouped.items()}

    weights_by_center = {w['center_code']: w for w in weights_df.to_dict('records')}
    centers = list(weights_df['center_code'])

    rows = []
    for center_code in centers:
        weights = weights_by_center[center_code]
        center_indents = sorted((d, q) for (c, d), q in open_indents.items() if c == center_code)
        for indent_date, indent_qty in center_indents:
            for header in headers:
                weight = None
                label = None
                if header < current_date:
                    entry_type = 'Actual'
                    quantity = actuals.get((center_code, indent_date, header), 0.0)
                else:
                    entry_type = 'Forecast'
                    day_diff = (header - indent_date).days
                    if 0 <= day_diff <= 3:
                        key = WEIGHT_KEYS[day_diff]
                        weight = float(weights[key])
                        label = key.upper()
                        quantity = indent_qty * weight
                    else:
                        quantity = 0.0
                rows.append({
                    'center_code': center_code,
                    'indent_date': indent_date,
                    'indent_qty': indent_qty,
                    'date': header,
                    'type': entry_type,
                    'quantity': quantity,
                    'weight_label': label,
                    'weight': weight,
                })

    columns = ['center_code', 'indent_date', 'indent_qty', 'date', 'type', 'quantity', 'weight_label', 'weight']
    return pd.DataFrame(rows, columns=columns), headers
