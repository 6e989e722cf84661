"""
Tests for data_loader module
Tests CSV record loading, type coercion and row filtering
"""

import pytest
import pandas as pd
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data_loader import (
    load_bonding_data, load_indent_data, load_purchase_data,
    prepare_bonding_records, prepare_indent_records, parse_date_column,
    safe_numeric_column,
)
from conftest import assert_log_contains, assert_columns_exist

MAPPING = {'A-OLD': 'A'}


class TestParsing:
    """Test column coercion helpers"""

    def test_parse_date_column_accepts_supported_formats(self):
        series = pd.Series(['2024-11-05', '05-11-2024', '05/11/2024', '2024-11-05T00:00:00.000Z'])
        parsed = parse_date_column(series)
        assert (parsed == pd.Timestamp('2024-11-05')).all()

    def test_parse_date_column_invalid_becomes_nat(self):
        parsed = parse_date_column(pd.Series(['garbage', None]))
        assert parsed.isna().all()

    def test_safe_numeric_column_removes_thousands_separator(self):
        values = safe_numeric_column(pd.Series(['1,250', '3.5', 'x']))
        assert values.iloc[0] == 1250.0
        assert values.iloc[1] == 3.5
        assert pd.isna(values.iloc[2])


class TestBondingLoader:
    """Test bonding loading and percentage conversion"""

    def test_load_bonding_converts_to_percentages(self):
        logs, df = load_bonding_data('BONDING.csv', center_mapping=MAPPING)
        assert_columns_exist(df, ['center_code', 'center_name', 'bonding_pct', 'is_gate'])

        pcts = dict(zip(df['center_code'], df['bonding_pct']))
        assert pcts == pytest.approx({'A': 40.0, 'G1': 40.0, 'C': 20.0})
        assert df['bonding_pct'].sum() == pytest.approx(100.0)

    def test_load_bonding_flags_gate_centers(self):
        _, df = load_bonding_data('BONDING.csv', center_mapping=MAPPING)
        gates = dict(zip(df['center_code'], df['is_gate']))
        assert gates['G1']
        assert not gates['A']

    def test_load_bonding_drops_zero_rows(self):
        logs, df = load_bonding_data('BONDING.csv')
        assert 'D' not in set(df['center_code'])
        assert_log_contains(logs, "Dropped 1 bonding rows")

    def test_missing_required_column_logs_error(self):
        raw = pd.DataFrame({'Code': ['A'], 'Center': ['North']})
        logs, df = prepare_bonding_records(raw)
        assert df.empty
        assert_log_contains(logs, "ERROR: 'Bonding' is missing required columns: Bonding")

    def test_missing_file_returns_empty(self):
        logs, df = load_bonding_data('does_not_exist.csv')
        assert df.empty
        assert_log_contains(logs, "ERROR: Failed to read 'BONDING.csv'")


class TestIndentLoader:
    """Test indent loading"""

    def test_load_indents_sums_same_center_and_date(self):
        logs, df = load_indent_data('INDENT.csv')
        a_rows = df[df['center_code'] == 'A']
        assert len(a_rows) == 1
        assert a_rows['qty'].iloc[0] == 1200.0
        assert a_rows['po_count'].iloc[0] == 4.0
        assert a_rows['indent_date'].iloc[0] == pd.Timestamp('2024-11-05')

    def test_load_indents_drops_bad_dates_and_zero_qty(self):
        logs, df = load_indent_data('INDENT.csv')
        assert len(df) == 2
        assert 'G1' not in set(df['center_code'])
        assert_log_contains(logs, "Dropped 1 indent rows with unparseable Indent Date")

    def test_headers_match_case_and_spacing_insensitive(self):
        raw = pd.DataFrame({'code': ['A'], 'INDENTDATE': ['2024-11-01'], 'qty': ['10']})
        logs, df = prepare_indent_records(raw)
        assert len(df) == 1
        assert df['qty'].iloc[0] == 10.0


class TestPurchaseLoader:
    """Test purchase loading"""

    def test_load_purchases_applies_mapping(self):
        logs, df = load_purchase_data('PURCHASE.csv', center_mapping=MAPPING)
        assert set(df['center_code']) == {'A', 'C'}
        assert df[df['center_code'] == 'A']['qty'].sum() == 1000.0

    def test_load_purchases_drops_rows_without_indent_date(self):
        logs, df = load_purchase_data('PURCHASE.csv')
        assert len(df) == 3
        assert_log_contains(logs, "Dropped 1 purchase rows")
