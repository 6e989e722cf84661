import dataclasses
import io
import pandas as pd

# --- Constants ---
REPORT_SHEETS = {
    'center_weights': 'D Weights',
    'forecast_breakdown': 'Forecast T+3',
    'open_indent_matrix': 'Open Indents',
    'season_weights': 'Season Weights',
}


def _prepare_for_export(df):
    """Copy df only when datetime columns need flattening to YYYY-MM-DD text."""
    datetime_cols = [col for col in df.columns if pd.api.types.is_datetime64_any_dtype(df[col])]
    if not datetime_cols:
        return df

    df = df.copy()
    for col in datetime_cols:
        if getattr(df[col].dt, 'tz', None) is not None:
            df[col] = df[col].dt.tz_localize(None)
        df[col] = df[col].dt.strftime('%Y-%m-%d')
    return df


# --- Data Export Functions ---

def get_filtered_data_as_excel(dfs_to_export_dict):
    """
    Write a dictionary of dataframes to an Excel workbook and return its bytes.
    The dictionary format is { "sheet_name": (dataframe, include_index_bool) }
    Non-DataFrame and empty entries are skipped.
    """
    output = io.BytesIO()

    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        written = 0
        for sheet_name, (df, include_index) in dfs_to_export_dict.items():
            if not isinstance(df, pd.DataFrame) or df.empty:
                continue

            df_to_export = _prepare_for_export(df)
            df_to_export.to_excel(writer, sheet_name=sheet_name, index=include_index)
            written += 1

            # Auto-adjust column widths
            worksheet = writer.sheets[sheet_name]
            offset = 1 if include_index else 0
            for idx, col in enumerate(df_to_export.columns):
                series = df_to_export[col]
                max_len = max(series.astype(str).map(len).max(), len(str(series.name))) + 2
                worksheet.set_column(idx + offset, idx + offset, max_len)

        if written == 0:
            # xlsxwriter needs at least one sheet
            pd.DataFrame().to_excel(writer, sheet_name='Empty', index=False)

    return output.getvalue()


def get_run_summary_dataframe(run):
    """Plant-level aggregates and echoed inputs of a run as a two-column table."""
    summary = run.summary()
    inputs = dataclasses.asdict(run.inputs)
    inputs['constraints'] = len(run.inputs.constraints)
    items = [(key, value) for key, value in summary.items()]
    items += [(f"input: {key}", value) for key, value in inputs.items()]
    items.append(('timestamp', run.timestamp))
    return pd.DataFrame(items, columns=['Field', 'Value']).astype({'Value': str})


def export_run_to_excel(run):
    """
    Export a calculation run (result table, summary and reports) to Excel bytes.
    """
    sheets = {
        'Recommended Indents': (run.to_dataframe(), False),
        'Summary': (get_run_summary_dataframe(run), False),
    }
    for key, sheet_name in REPORT_SHEETS.items():
        if key in run.reports:
            sheets[sheet_name] = (run.reports[key], False)
    return get_filtered_data_as_excel(sheets)


def export_run_to_csv(run, rounding=2):
    """
    Result table of a run as CSV text.

    Args:
        run: CalculationRun
        rounding: decimals for numeric columns (None keeps full precision)
    """
    df = run.to_dataframe()
    if rounding is not None:
        numeric_cols = df.select_dtypes(include='number').columns
        df[numeric_cols] = df[numeric_cols].round(rounding)
    return df.to_csv(index=False)
