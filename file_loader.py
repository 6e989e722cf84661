"""
Helper module to read record CSVs (bonding, indent, purchase, center mapping)
from either disk or Streamlit uploaded buffers.
"""
import os
import pandas as pd
import streamlit as st

# session_state.uploaded_files keys for each record source
UPLOAD_KEYS = ('bonding', 'indent', 'purchase', 'center_mapping')


def get_uploaded_files():
    """Return the uploaded buffers dict, or {} outside a Streamlit session."""
    try:
        return st.session_state.get('uploaded_files', {})
    except (AttributeError, RuntimeError):
        return {}


def get_file_source(file_key, file_path):
    """
    Returns a file-like object or path for reading a record CSV.

    Priority:
    1. Uploaded buffer in session_state.uploaded_files[file_key]
    2. file_path on disk

    Returns:
        tuple: (source, is_uploaded); source is None if neither exists
    """
    uploaded_files = get_uploaded_files()

    if file_key in uploaded_files:
        buffer = uploaded_files[file_key]
        if hasattr(buffer, 'seek'):
            buffer.seek(0)
        return buffer, True
    if file_path and os.path.isfile(os.path.abspath(file_path)):
        return file_path, False
    return None, False


def safe_read_csv(file_key, file_path, **kwargs):
    """
    Read a record CSV from an uploaded buffer or disk.

    All columns are read as strings; the loaders coerce types themselves.

    Raises:
        FileNotFoundError: neither an upload nor the file exists
    """
    kwargs.setdefault('dtype', str)
    source, _ = get_file_source(file_key, file_path)

    if source is None:
        if not file_path:
            raise FileNotFoundError(f"No uploaded '{file_key}' file and no path given")
        # pd.read_csv may still resolve the path (e.g. monkeypatched in tests)
        try:
            return pd.read_csv(file_path, **kwargs)
        except FileNotFoundError:
            raise FileNotFoundError(f"File not found: {file_path} (and no uploaded file)")

    return pd.read_csv(source, **kwargs)
