"""
Business Rules Configuration
Centralized definitions for indent planning rules, accepted fields, and the
center code alias table.
This file allows rules to be changed in one place without modifying engine code.
"""

from datetime import datetime
import os
import pandas as pd

# ===== INDENT PLANNING RULES =====

INDENT_RULES = {
    "lag_buckets": {
        # Whole days between the originating indent date and the purchase date.
        # Negative lags (purchase recorded before the indent) are clamped into D1.
        "D1": {"min_lag": None, "max_lag": 0, "description": "Same day (or earlier)"},
        "D2": {"min_lag": 1, "max_lag": 1, "description": "Next day"},
        "D3": {"min_lag": 2, "max_lag": 2, "description": "Two days later"},
        "D4": {"min_lag": 3, "max_lag": None, "description": "Three or more days later"},
    },

    "eligibility": {
        # An indent occurrence feeds the weight average only if indent qty > 0 and
        # its date falls inside [T - lookback_days, T - closure_days].
        "closure_days": 4,      # D4 of a T-4 indent lands on T-1; newer indents are still maturing
        "lookback_days": None,  # None = entire history
        "recent_profile": {
            # Recent closed indents window (T-7 .. T-4): D4 arrivals for a T-4 indent land on T-1
            "closure_days": 4,
            "lookback_days": 7,
        },
    },

    "weight_bounds": (0.0, 1.0),

    "forecast": {
        "horizon_days": 3,
        # indent date offset from T -> weight applied to it for arrivals on T+3
        "contributions": {2: "d2", 1: "d3", 0: "d4"},
    },

    "division_safety": {
        "min_overrun": -1.0,         # Overrun at or below this skips the correction
        "d1_zero_policy": "unscaled",  # D1 = 0 -> emit target arrival as the indent
    },

    "stock_points": {
        "gate_keyword": "GATE",  # Center names containing this are gate centers
    },

    "open_indent_matrix": {
        "start_offset_days": -3,
        "end_offset_days": 6,
    },

    "constraints": {
        "types": ["mill", "field"],
        # mill: demand side, reduces requirement; field: supply side, warning only
    },
}

WEIGHT_KEYS = ("d1", "d2", "d3", "d4")


# ===== CENTER MAPPING RULES =====

CENTER_MAPPING_RULES = {
    "default_file": "CENTER_MAPPING.csv",
    "source_columns": ["Source Code", "From", "Alias", "Old Code"],
    "target_columns": ["Target Code", "To", "Code", "New Code"],
}


# ===== DATA FIELD DEFINITIONS =====

DATA_FIELD_DEFINITIONS = {
    "bonding": {
        "file_description": "Allocated share of plant requirement per center",
        "fields": {
            "center_code": {"aliases": ["Code"], "required": True},
            "center_name": {"aliases": ["Center", "Center Name", "Centre", "Centre Name"], "required": True},
            "bonding": {"aliases": ["Bonding"], "required": True},
        },
    },
    "indent": {
        "file_description": "Indents placed per center and date",
        "fields": {
            "center_code": {"aliases": ["Code"], "required": True},
            "indent_date": {"aliases": ["Indent Date"], "required": True},
            "qty": {"aliases": ["Qty in Qtls", "Qty"], "required": True},
            "po_count": {"aliases": ["No of Purchy"], "required": False},
        },
    },
    "purchase": {
        "file_description": "Deliveries received against earlier indents",
        "fields": {
            "center_code": {"aliases": ["Code"], "required": True},
            "purchase_date": {"aliases": ["Purchase Date"], "required": True},
            "indent_date": {"aliases": ["Indent Date"], "required": True},
            "qty": {"aliases": ["Qty in Qtls", "Qty"], "required": True},
            "po_count": {"aliases": ["No of Purchy"], "required": False},
        },
    },
}


def get_lag_bucket(lag_days):
    """
    Get the lag bucket label (D1-D4) for a lag in whole days.

    Args:
        lag_days: purchase date minus indent date, in days

    Returns:
        One of 'D1', 'D2', 'D3', 'D4'
    """
    if lag_days <= 0:
        return 'D1'
    elif lag_days == 1:
        return 'D2'
    elif lag_days == 2:
        return 'D3'
    return 'D4'


def get_eligibility_window(profile=None):
    """Return (closure_days, lookback_days) for the default or the 'recent' profile."""
    rules = INDENT_RULES["eligibility"]
    if profile == "recent":
        rules = rules["recent_profile"]
    return rules["closure_days"], rules["lookback_days"]


def is_gate_center(center_name):
    """Gate centers are identified by the stock point keyword in their name."""
    if center_name is None or pd.isna(center_name):
        return False
    return INDENT_RULES["stock_points"]["gate_keyword"] in str(center_name).upper()


def find_column(df, aliases):
    """
    Find the first column in df matching any alias.
    Matching ignores case and whitespace.

    Returns:
        Actual column name, or None
    """
    normalized = {str(col).lower().replace(' ', ''): col for col in df.columns}
    for alias in aliases:
        key = alias.lower().replace(' ', '')
        if key in normalized:
            return normalized[key]
    return None


def load_center_mapping(file_path=None):
    """
    Load the center code alias table.

    Args:
        file_path: Path to the mapping CSV (relative paths resolve against this
                   file's directory)

    Returns:
        tuple: (logs, mapping) where mapping is {source_code: target_code}
    """
    logs = []
    mapping = {}

    if file_path is None:
        file_path = CENTER_MAPPING_RULES["default_file"]
    if not os.path.isabs(file_path):
        script_dir = os.path.dirname(os.path.abspath(__file__))
        file_path = os.path.join(script_dir, file_path)

    if not os.path.exists(file_path):
        logs.append(f"WARNING: Center mapping file not found at {file_path}. Using identity mapping.")
        return logs, mapping

    # Try multiple encodings
    try:
        df = pd.read_csv(file_path, dtype=str, encoding='utf-8')
    except UnicodeDecodeError:
        df = pd.read_csv(file_path, dtype=str, encoding='latin-1')

    parse_logs, mapping = parse_center_mapping(df)
    logs.extend(parse_logs)
    return logs, mapping


def parse_center_mapping(df):
    """
    Build a {source_code: target_code} dict from a mapping DataFrame.

    Rows with a blank source or target are skipped. Self-mappings are dropped.
    """
    logs = []
    mapping = {}

    source_col = find_column(df, CENTER_MAPPING_RULES["source_columns"])
    target_col = find_column(df, CENTER_MAPPING_RULES["target_columns"])
    if source_col is None or target_col is None:
        logs.append("ERROR: Center mapping is missing source/target code columns")
        return logs, mapping

    for source, target in zip(df[source_col], df[target_col]):
        if pd.isna(source) or pd.isna(target):
            continue
        source = str(source).strip()
        target = str(target).strip()
        if not source or not target or source == target:
            continue
        if source in mapping and mapping[source] != target:
            logs.append(f"WARNING: Center code '{source}' mapped twice; using '{target}'")
        mapping[source] = target

    logs.append(f"INFO: Loaded {len(mapping)} center code aliases")
    return logs, mapping


def export_business_rules_documentation(output_path="BUSINESS_RULES_DOCUMENTATION.md"):
    """
    Export the indent planning rules to a markdown documentation file.

    Args:
        output_path: Path for the output markdown file
    """
    with open(output_path, 'w') as f:
        f.write("# Business Rules Documentation\n\n")
        f.write(f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n")

        f.write("## Data Field Definitions\n\n")
        for file_name, file_info in DATA_FIELD_DEFINITIONS.items():
            f.write(f"### {file_name}\n\n")
            f.write(f"**Description:** {file_info['file_description']}\n\n")
            f.write("| Field | Accepted Headers | Required |\n")
            f.write("|-------|------------------|----------|\n")
            for field_name, field_def in file_info['fields'].items():
                f.write(f"| {field_name} | {', '.join(field_def['aliases'])} | {field_def['required']} |\n")
            f.write("\n")

        f.write("## Lag Buckets\n\n")
        for label, bucket in INDENT_RULES["lag_buckets"].items():
            f.write(f"- **{label}**: {bucket['description']}\n")
        f.write("\n")

        f.write("## Indent Rules\n\n")
        f.write(f"```python\n{INDENT_RULES}\n```\n\n")


if __name__ == "__main__":
    export_business_rules_documentation()
    print("Business rules documentation exported to BUSINESS_RULES_DOCUMENTATION.md")
