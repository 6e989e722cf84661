"""
Pytest configuration and shared fixtures for all tests
Centralized mock records and utilities
"""

import pytest
import pandas as pd
import io
import os
import sys
from datetime import date, timedelta

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

RUN_DATE = date(2024, 11, 10)


def day(offset):
    """RUN_DATE shifted by offset days, as a Timestamp."""
    return pd.Timestamp(RUN_DATE + timedelta(days=offset))


def make_bonding(pcts, names=None):
    """Bonding records from {center_code: bonding_pct}."""
    names = names or {}
    return pd.DataFrame({
        'center_code': list(pcts.keys()),
        'center_name': [names.get(code, f"Center {code}") for code in pcts],
        'bonding_pct': [float(v) for v in pcts.values()],
    })


def make_indents(rows):
    """Indent records from [(center_code, day_offset, qty), ...]."""
    return pd.DataFrame(
        [{'center_code': c, 'indent_date': day(o), 'qty': float(q)} for c, o, q in rows],
        columns=['center_code', 'indent_date', 'qty']
    )


def make_purchases(rows):
    """Purchase records from [(center_code, indent_offset, purchase_offset, qty), ...]."""
    return pd.DataFrame(
        [{'center_code': c, 'indent_date': day(i), 'purchase_date': day(p), 'qty': float(q)} for c, i, p, q in rows],
        columns=['center_code', 'purchase_date', 'indent_date', 'qty']
    )


# ===== SHARED MOCK RECORD FIXTURES =====

@pytest.fixture
def two_center_history():
    """
    Closed history for centers A and B plus an unbonded center Z:
    - A: indent 100 on T-5, 60 arrives same day, 40 next day  -> D1 0.6, D2 0.4
    - B: indent 100 on T-5, 50 same day, 50 two days later     -> D1 0.5, D3 0.5
    - Z: has history but no bonding entry
    Purchases equal indents, so overrun is 0. Nothing is indented for T..T+2.
    """
    indents = make_indents([('A', -5, 100), ('B', -5, 100), ('Z', -5, 50)])
    purchases = make_purchases([
        ('A', -5, -5, 60), ('A', -5, -4, 40),
        ('B', -5, -5, 50), ('B', -5, -3, 50),
        ('Z', -5, -5, 50),
    ])
    bonding = make_bonding({'A': 60, 'B': 40})
    return bonding, indents, purchases


@pytest.fixture
def mock_bonding_csv():
    """Bonding CSV with an alias code (A-OLD), a gate center, and a zero-bonding row."""
    csv_data = (
        "Code,Center,Bonding\n"
        "A,North Centre,300\n"
        "A-OLD,North Centre,100\n"
        "G1,Main GATE,400\n"
        "C,South Centre,200\n"
        "D,Closed Centre,0\n"
    )
    return "BONDING.csv", io.StringIO(csv_data)


@pytest.fixture
def mock_indent_csv():
    """
    Indent CSV with:
    - Two rows for the same center and date (summed)
    - DD-MM-YYYY and ISO dates
    - An unparseable date and a zero quantity (dropped)
    """
    csv_data = (
        "Code,Center Name,Indent Date,No of Purchy,Qty in Qtls\n"
        "A,North Centre,05-11-2024,3,\"1,000\"\n"
        "A,North Centre,05-11-2024,1,200\n"
        "C,South Centre,2024-11-06,2,500\n"
        "C,South Centre,NOT-A-DATE,2,500\n"
        "G1,Main GATE,06/11/2024,1,0\n"
    )
    return "INDENT.csv", io.StringIO(csv_data)


@pytest.fixture
def mock_purchase_csv():
    """Purchase CSV with a row missing its Indent Date (dropped)."""
    csv_data = (
        "Code,Center Name,Purchase Date,Indent Date,No of Purchy,Qty in Qtls\n"
        "A,North Centre,05-11-2024,05-11-2024,2,700\n"
        "A-OLD,North Centre,06-11-2024,05-11-2024,1,300\n"
        "C,South Centre,08-11-2024,06-11-2024,1,450\n"
        "C,South Centre,08-11-2024,,1,10\n"
    )
    return "PURCHASE.csv", io.StringIO(csv_data)


# ===== MOCK CSV READER FIXTURE =====

@pytest.fixture(autouse=True)
def mock_read_csv(monkeypatch, mock_bonding_csv, mock_indent_csv, mock_purchase_csv):
    """
    Auto-used fixture that intercepts pd.read_csv calls for the mock file
    names and returns the mock data. Other paths fall through to pandas.
    """
    mocks = {
        "BONDING.csv": mock_bonding_csv[1],
        "INDENT.csv": mock_indent_csv[1],
        "PURCHASE.csv": mock_purchase_csv[1],
    }

    original_read_csv = pd.read_csv

    def new_read_csv(filepath_or_buffer, *args, **kwargs):
        if isinstance(filepath_or_buffer, str):
            filename = os.path.basename(filepath_or_buffer)
            if filename in mocks:
                mocks[filename].seek(0)
                return original_read_csv(mocks[filename], *args, **kwargs)
        return original_read_csv(filepath_or_buffer, *args, **kwargs)

    monkeypatch.setattr(pd, "read_csv", new_read_csv)


# ===== UTILITY FUNCTIONS FOR TESTS =====

def assert_log_contains(logs, expected_message):
    """
    Helper to assert that a log message contains expected text

    Args:
        logs: List of log messages
        expected_message: Text expected to be in one of the logs
    """
    log_text = " ".join(logs)
    assert expected_message in log_text, f"Expected '{expected_message}' not found in logs: {log_text}"


def assert_columns_exist(df, columns):
    """
    Helper to assert that DataFrame contains required columns

    Args:
        df: Pandas DataFrame
        columns: List of column names that should exist
    """
    missing = set(columns) - set(df.columns)
    assert not missing, f"Missing required columns: {missing}"
