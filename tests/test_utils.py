"""
Tests for utils module
Tests Excel and CSV export of calculation runs
"""

import io
import zipfile

import pytest
import pandas as pd
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils import get_filtered_data_as_excel, export_run_to_excel, export_run_to_csv, get_run_summary_dataframe
from indent_planning import CalculationInputs, calculate_recommended_indents
from conftest import RUN_DATE


def sheet_names(xlsx_bytes):
    """Sheet names listed in the workbook part of an xlsx file."""
    with zipfile.ZipFile(io.BytesIO(xlsx_bytes)) as archive:
        workbook = archive.read('xl/workbook.xml').decode('utf-8')
    return workbook


@pytest.fixture
def sample_run(two_center_history):
    bonding, indents, purchases = two_center_history
    inputs = CalculationInputs(current_date=RUN_DATE, plant_capacity=0, total_daily_requirement=1000)
    return calculate_recommended_indents(bonding, indents, purchases, inputs, name='Morning run')


class TestExcelExport:
    """Test Excel export functionality"""

    def test_get_filtered_data_as_excel_returns_bytes(self):
        """Test that Excel export returns bytes"""
        df = pd.DataFrame({'col1': [1, 2, 3], 'col2': ['a', 'b', 'c']})
        result = get_filtered_data_as_excel({"Test Sheet": (df, False)})
        assert isinstance(result, bytes)
        assert 'Test Sheet' in sheet_names(result)

    def test_empty_frames_still_produce_workbook(self):
        """Test Excel export with only empty DataFrames"""
        result = get_filtered_data_as_excel({"Empty Sheet": (pd.DataFrame(), False)})
        names = sheet_names(result)
        assert 'Empty Sheet' not in names
        assert 'Empty' in names

    def test_datetime_columns_exported(self):
        """Test Excel export with datetime columns"""
        df = pd.DataFrame({'date': pd.date_range('2024-11-01', periods=3), 'qty': [1.0, 2.0, 3.0]})
        result = get_filtered_data_as_excel({"Dates": (df, True)})
        assert len(result) > 0

    def test_export_run_contains_result_and_report_sheets(self, sample_run):
        names = sheet_names(export_run_to_excel(sample_run))
        for sheet in ('Recommended Indents', 'Summary', 'D Weights', 'Forecast T+3', 'Open Indents'):
            assert sheet in names


class TestCsvExport:
    """Test CSV export of the result table"""

    def test_export_run_to_csv(self, sample_run):
        text = export_run_to_csv(sample_run)
        df = pd.read_csv(io.StringIO(text))
        assert list(df['center_code']) == ['A', 'B']
        assert df['recommended_indent'].tolist() == pytest.approx([1000.0, 800.0])
        assert 'confidence_notes' in df.columns

    def test_summary_table(self, sample_run):
        summary = get_run_summary_dataframe(sample_run).set_index('Field')['Value']
        assert summary['name'] == 'Morning run'
        assert summary['centers'] == '2'
        assert summary['input: total_daily_requirement'] == '1000'
