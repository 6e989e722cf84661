"""
Center Code Normalization
=========================
Consolidates aliased / legacy center codes onto canonical codes before any
aggregation happens.

The mapping is a plain {source_code: target_code} dict passed in per call.
Unmapped codes pass through unchanged. Chains (A -> B -> C) are flattened so
that normalizing an already-normalized record set is a no-op.
"""

import pandas as pd
from typing import Dict, List, Optional, Tuple


def resolve_mapping(center_mapping: Optional[Dict[str, str]]) -> Dict[str, str]:
    """
    Flatten alias chains so every source maps straight to its final code.

    Cycles (A -> B -> A) collapse onto the smallest code in the cycle.

    Args:
        center_mapping: {source_code: target_code}, may be None or empty

    Returns:
        New dict with chains resolved; self-mappings removed
    """
    if not center_mapping:
        return {}

    mapping = {str(k).strip(): str(v).strip() for k, v in center_mapping.items()}
    resolved = {}

    for source in mapping:
        path = [source]
        current = source
        while current in mapping and mapping[current] not in path:
            current = mapping[current]
            path.append(current)

        if current in mapping:
            # mapping[current] is already on the path -> cycle
            cycle = path[path.index(mapping[current]):]
            final = min(cycle)
        else:
            final = current

        if final != source:
            resolved[source] = final

    return resolved


def map_center_code(code, center_mapping: Dict[str, str]):
    """Return the canonical code for a single center code."""
    if code is None or pd.isna(code):
        return code
    return center_mapping.get(str(code).strip(), code)


def apply_center_mapping(df: pd.DataFrame, center_mapping: Optional[Dict[str, str]],
                         code_column: str = 'center_code') -> pd.DataFrame:
    """
    Replace center codes in df with their canonical codes.

    The input frame is not modified.

    Args:
        df: Records with a center code column
        center_mapping: {source_code: target_code}
        code_column: Name of the center code column

    Returns:
        Copy of df with mapped codes
    """
    df = df.copy()
    resolved = resolve_mapping(center_mapping)
    if not resolved or df.empty or code_column not in df.columns:
        return df

    df[code_column] = df[code_column].map(lambda code: map_center_code(code, resolved))
    return df


def normalize_records(
    bonding_df: pd.DataFrame,
    indent_df: pd.DataFrame,
    purchase_df: pd.DataFrame,
    center_mapping: Optional[Dict[str, str]] = None
) -> Tuple[List[str], pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """
    Apply the center mapping to all three record sets.

    Indents sharing a (center, date) after mapping stay as separate rows; the
    engine sums them on lookup.

    Returns:
        tuple: (logs, bonding_df, indent_df, purchase_df)
    """
    logs = []
    resolved = resolve_mapping(center_mapping)

    if not resolved:
        logs.append("INFO: No center code aliases supplied; codes used as-is")
        return logs, bonding_df.copy(), indent_df.copy(), purchase_df.copy()

    remapped = {}
    for name, df in (('bonding', bonding_df), ('indent', indent_df), ('purchase', purchase_df)):
        if 'center_code' in df.columns and not df.empty:
            remapped[name] = int(df['center_code'].astype(str).str.strip().isin(resolved.keys()).sum())
        else:
            remapped[name] = 0

    logs.append(
        f"INFO: Applied {len(resolved)} center aliases "
        f"(bonding: {remapped['bonding']}, indent: {remapped['indent']}, purchase: {remapped['purchase']} rows remapped)"
    )

    return (
        logs,
        apply_center_mapping(bonding_df, resolved),
        apply_center_mapping(indent_df, resolved),
        apply_center_mapping(purchase_df, resolved),
    )


def get_mapping_summary(center_mapping: Optional[Dict[str, str]]) -> Dict[str, int]:
    """
    Get summary statistics about a center mapping.

    Returns:
        Dictionary with alias counts
    """
    resolved = resolve_mapping(center_mapping)
    targets = set(resolved.values())
    aliases_per_target = {}
    for target in resolved.values():
        aliases_per_target[target] = aliases_per_target.get(target, 0) + 1

    return {
        'total_aliases': len(resolved),
        'canonical_centers': len(targets),
        'centers_with_2plus_aliases': sum(1 for v in aliases_per_target.values() if v >= 2),
    }
