"""
Tests for center_mapping module
"""

import pandas as pd
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from center_mapping import apply_center_mapping, normalize_records, resolve_mapping, get_mapping_summary
from conftest import make_bonding, make_indents, make_purchases


class TestResolveMapping:
    """Test alias chain resolution"""

    def test_chains_are_flattened(self):
        assert resolve_mapping({'A': 'B', 'B': 'C'}) == {'A': 'C', 'B': 'C'}

    def test_cycles_collapse_to_smallest_code(self):
        assert resolve_mapping({'B': 'A', 'A': 'B'}) == {'B': 'A'}

    def test_empty_and_none(self):
        assert resolve_mapping(None) == {}
        assert resolve_mapping({}) == {}


class TestApplyMapping:
    """Test record normalization"""

    def test_unmapped_codes_pass_through(self):
        df = pd.DataFrame({'center_code': ['X', 'OLD'], 'qty': [1.0, 2.0]})
        result = apply_center_mapping(df, {'OLD': 'NEW'})
        assert list(result['center_code']) == ['X', 'NEW']

    def test_input_is_not_mutated(self):
        df = pd.DataFrame({'center_code': ['OLD'], 'qty': [1.0]})
        apply_center_mapping(df, {'OLD': 'NEW'})
        assert df['center_code'].iloc[0] == 'OLD'

    def test_mapping_is_idempotent(self):
        mapping = {'A1': 'A', 'A2': 'A1', 'B1': 'B'}
        indents = make_indents([('A1', -3, 10), ('A2', -2, 5), ('B1', -1, 7), ('C', -1, 1)])
        once = apply_center_mapping(indents, mapping)
        twice = apply_center_mapping(once, mapping)
        pd.testing.assert_frame_equal(once, twice)
        assert set(once['center_code']) == {'A', 'B', 'C'}

    def test_normalize_records_maps_all_sets(self):
        bonding = make_bonding({'OLD': 100})
        indents = make_indents([('OLD', -3, 10)])
        purchases = make_purchases([('OLD', -3, -3, 10)])
        logs, b, i, p = normalize_records(bonding, indents, purchases, {'OLD': 'NEW'})
        assert b['center_code'].tolist() == ['NEW']
        assert i['center_code'].tolist() == ['NEW']
        assert p['center_code'].tolist() == ['NEW']
        assert "bonding: 1, indent: 1, purchase: 1" in " ".join(logs)

    def test_mapping_summary(self):
        summary = get_mapping_summary({'A1': 'A', 'A2': 'A', 'B1': 'B'})
        assert summary == {'total_aliases': 3, 'canonical_centers': 2, 'centers_with_2plus_aliases': 1}
