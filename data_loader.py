import pandas as pd
import time
from file_loader import safe_read_csv
from business_rules import DATA_FIELD_DEFINITIONS, find_column, is_gate_center
from center_mapping import apply_center_mapping

# === Helper Functions ===

DATE_FORMATS = ('%Y-%m-%d', '%d-%m-%Y', '%d/%m/%Y')


def clean_string_column(series: pd.Series) -> pd.Series:
    """
    Strip whitespace and collapse internal runs of spaces.

    Args:
        series: Pandas Series with string data

    Returns:
        Cleaned Series with normalized whitespace
    """
    return series.astype(str).str.strip().str.replace(r'\s+', ' ', regex=True)


def safe_numeric_column(series: pd.Series, remove_commas: bool = True) -> pd.Series:
    """
    Convert column to numeric, leaving unparseable values as NaN.

    Args:
        series: Pandas Series to convert
        remove_commas: If True, remove thousands separators before conversion

    Returns:
        Numeric (float) Series
    """
    if remove_commas:
        series = series.astype(str).str.replace(',', '', regex=False)
    return pd.to_numeric(series, errors='coerce').astype(float)


def parse_date_column(series: pd.Series) -> pd.Series:
    """
    Parse a date column to midnight timestamps.

    Tries ISO, DD-MM-YYYY and DD/MM/YYYY in turn; falls back to a day-first
    parse for anything still unresolved. Unparseable values become NaT.
    """
    if pd.api.types.is_datetime64_any_dtype(series):
        return series.dt.normalize()

    values = series.astype(str).str.strip()
    # ISO timestamps ('2024-01-05T00:00:00') keep only the date part
    values = values.str.split('T').str[0]
    parsed = pd.Series(pd.NaT, index=series.index, dtype='datetime64[ns]')
    for fmt in DATE_FORMATS:
        missing = parsed.isna()
        if not missing.any():
            break
        parsed.loc[missing] = pd.to_datetime(values[missing], format=fmt, errors='coerce')

    missing = parsed.isna()
    if missing.any():
        parsed.loc[missing] = pd.to_datetime(values[missing], dayfirst=True, errors='coerce')
    return parsed.dt.normalize()


def resolve_columns(df, record_type, logs, filename):
    """
    Map the raw CSV headers of df onto the record fields for record_type.

    Returns:
        dict {field: actual_column} or None if a required field is missing
    """
    fields = DATA_FIELD_DEFINITIONS[record_type]['fields']
    resolved = {}
    missing = []
    for field, definition in fields.items():
        col = find_column(df, definition['aliases'])
        if col is not None:
            resolved[field] = col
        elif definition['required']:
            missing.append(definition['aliases'][0])

    if missing:
        logs.append(f"ERROR: '{filename}' is missing required columns: {', '.join(missing)}")
        return None
    return resolved


def _read_records(file_key, file_path, logs, label):
    try:
        df = safe_read_csv(file_key, file_path)
        logs.append(f"INFO: Loaded {len(df)} rows from {label}.")
        return df
    except Exception as e:
        logs.append(f"ERROR: Failed to read '{label}': {e}")
        return None


# === Record Preparation (raw DataFrame -> typed records) ===

def prepare_bonding_records(raw_df, center_mapping=None, filename='Bonding'):
    """
    Convert a raw bonding table into bonding records.

    Bonding quantities are summed per (mapped) center code and expressed as a
    percentage of the bonding total, so the percentages sum to 100.

    Returns:
        tuple: (logs, bonding_df) with columns
        center_code, center_name, bonding_qty, bonding_pct, is_gate
    """
    logs = []
    columns = ['center_code', 'center_name', 'bonding_qty', 'bonding_pct', 'is_gate']

    cols = resolve_columns(raw_df, 'bonding', logs, filename)
    if cols is None:
        return logs, pd.DataFrame(columns=columns)

    df = pd.DataFrame({
        'center_code': clean_string_column(raw_df[cols['center_code']]),
        'center_name': clean_string_column(raw_df[cols['center_name']]),
        'bonding_qty': safe_numeric_column(raw_df[cols['bonding']]),
    })
    invalid = df['center_code'].isin(['', 'nan']) | df['bonding_qty'].isna() | (df['bonding_qty'] <= 0)
    if invalid.any():
        logs.append(f"WARNING: Dropped {int(invalid.sum())} bonding rows with blank code or bonding <= 0")
    df = df[~invalid]

    df = apply_center_mapping(df, center_mapping)

    df = df.groupby('center_code', sort=False).agg(
        center_name=('center_name', 'first'),
        bonding_qty=('bonding_qty', 'sum'),
    ).reset_index()

    total_bonding = df['bonding_qty'].sum()
    df['bonding_pct'] = df['bonding_qty'] / total_bonding * 100 if total_bonding > 0 else 0.0
    df['is_gate'] = df['center_name'].apply(is_gate_center)

    logs.append(f"INFO: Prepared bonding for {len(df)} centers ({int(df['is_gate'].sum())} gate centers)")
    return logs, df[columns]


def prepare_indent_records(raw_df, center_mapping=None, filename='Indent'):
    """
    Convert a raw indent table into indent records.

    Indents for the same (center, date) are summed.

    Returns:
        tuple: (logs, indent_df) with columns center_code, indent_date, qty, po_count
    """
    logs = []
    columns = ['center_code', 'indent_date', 'qty', 'po_count']

    cols = resolve_columns(raw_df, 'indent', logs, filename)
    if cols is None:
        return logs, pd.DataFrame(columns=columns)

    df = pd.DataFrame({
        'center_code': clean_string_column(raw_df[cols['center_code']]),
        'indent_date': parse_date_column(raw_df[cols['indent_date']]),
        'qty': safe_numeric_column(raw_df[cols['qty']]),
    })
    if 'po_count' in cols:
        df['po_count'] = safe_numeric_column(raw_df[cols['po_count']]).fillna(0)
    else:
        df['po_count'] = 0.0

    bad_dates = df['indent_date'].isna()
    if bad_dates.any():
        logs.append(f"WARNING: Dropped {int(bad_dates.sum())} indent rows with unparseable Indent Date")
    invalid = bad_dates | df['center_code'].isin(['', 'nan']) | df['qty'].isna() | (df['qty'] <= 0)
    df = df[~invalid]

    df = apply_center_mapping(df, center_mapping)
    df = df.groupby(['center_code', 'indent_date'], sort=False, as_index=False)[['qty', 'po_count']].sum()

    logs.append(f"INFO: Prepared {len(df)} indent records for {df['center_code'].nunique()} centers")
    return logs, df[columns]


def prepare_purchase_records(raw_df, center_mapping=None, filename='Purchase'):
    """
    Convert a raw purchase table into purchase records.

    Purchases without an originating Indent Date cannot be attributed to a lag
    and are dropped.

    Returns:
        tuple: (logs, purchase_df) with columns
        center_code, purchase_date, indent_date, qty, po_count
    """
    logs = []
    columns = ['center_code', 'purchase_date', 'indent_date', 'qty', 'po_count']

    cols = resolve_columns(raw_df, 'purchase', logs, filename)
    if cols is None:
        return logs, pd.DataFrame(columns=columns)

    df = pd.DataFrame({
        'center_code': clean_string_column(raw_df[cols['center_code']]),
        'purchase_date': parse_date_column(raw_df[cols['purchase_date']]),
        'indent_date': parse_date_column(raw_df[cols['indent_date']]),
        'qty': safe_numeric_column(raw_df[cols['qty']]),
    })
    if 'po_count' in cols:
        df['po_count'] = safe_numeric_column(raw_df[cols['po_count']]).fillna(0)
    else:
        df['po_count'] = 0.0

    bad_dates = df['purchase_date'].isna() | df['indent_date'].isna()
    if bad_dates.any():
        logs.append(f"WARNING: Dropped {int(bad_dates.sum())} purchase rows with unparseable Purchase/Indent Date")
    invalid = bad_dates | df['center_code'].isin(['', 'nan']) | df['qty'].isna() | (df['qty'] <= 0)
    df = df[~invalid].reset_index(drop=True)

    df = apply_center_mapping(df, center_mapping)

    logs.append(f"INFO: Prepared {len(df)} purchase records for {df['center_code'].nunique()} centers")
    return logs, df[columns]


# === File Loaders ===

def load_bonding_data(bonding_path=None, file_key='bonding', center_mapping=None):
    """
    Load BONDING.csv from an upload or disk.

    Returns:
        tuple: (logs, bonding_df)
    """
    logs = ["--- Bonding Loader ---"]
    start_time = time.time()

    raw_df = _read_records(file_key, bonding_path, logs, 'BONDING.csv')
    if raw_df is None:
        return logs, pd.DataFrame(columns=['center_code', 'center_name', 'bonding_qty', 'bonding_pct', 'is_gate'])

    prep_logs, df = prepare_bonding_records(raw_df, center_mapping, 'BONDING.csv')
    logs.extend(prep_logs)
    logs.append(f"INFO: Bonding Loader finished in {time.time() - start_time:.2f} seconds.")
    return logs, df


def load_indent_data(indent_path=None, file_key='indent', center_mapping=None):
    """
    Load INDENT.csv from an upload or disk.

    Returns:
        tuple: (logs, indent_df)
    """
    logs = ["--- Indent Loader ---"]
    start_time = time.time()

    raw_df = _read_records(file_key, indent_path, logs, 'INDENT.csv')
    if raw_df is None:
        return logs, pd.DataFrame(columns=['center_code', 'indent_date', 'qty', 'po_count'])

    prep_logs, df = prepare_indent_records(raw_df, center_mapping, 'INDENT.csv')
    logs.extend(prep_logs)
    logs.append(f"INFO: Indent Loader finished in {time.time() - start_time:.2f} seconds.")
    return logs, df


def load_purchase_data(purchase_path=None, file_key='purchase', center_mapping=None):
    """
    Load PURCHASE.csv from an upload or disk.

    Returns:
        tuple: (logs, purchase_df)
    """
    logs = ["--- Purchase Loader ---"]
    start_time = time.time()

    raw_df = _read_records(file_key, purchase_path, logs, 'PURCHASE.csv')
    if raw_df is None:
        return logs, pd.DataFrame(columns=['center_code', 'purchase_date', 'indent_date', 'qty', 'po_count'])

    prep_logs, df = prepare_purchase_records(raw_df, center_mapping, 'PURCHASE.csv')
    logs.extend(prep_logs)
    logs.append(f"INFO: Purchase Loader finished in {time.time() - start_time:.2f} seconds.")
    return logs, df
