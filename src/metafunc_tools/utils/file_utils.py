# metafunc_tools/utils/file_utils.py
import os
import re


def check_file_exists_with_logger(filepath, description, logger):
    """
    Check if file exists & is readable (logger-based).
    """
    if not os.path.isfile(filepath):
        logger.error(f"{description} file does not exist: {filepath}")
        return False
    if not os.access(filepath, os.R_OK):
        logger.error(f"{description} file is not readable: {filepath}")
        return False
    return True


def sanitize_filename(filename):
    """Replace invalid filename characters with underscores."""
    return re.sub(r'[<>:"/\\|?* ]', '_', str(filename))


def strip_suffix(col):
    """
    Remove HUMAnN-style abundance suffixes from a sample column name.
    """
    suffixes = [
        ".paired_Abundance-RPKs",
        "_Abundance-RPKs",
        "_Abundance-Counts",
        "_Abundance-CPM",
        "_Abundance-RELAB",
        "_Abundance",
        "-rpks",
        "-counts",
        "-cpm",
        "-relab",
    ]
    
    for suffix in suffixes:
        if col.lower().endswith(suffix.lower()):
            return col[:-len(suffix)]
    
    # Sample_UNIT or Sample-UNIT or variations
    for marker in ['_abundance', '-abundance', '_rpks', '_counts', '_cpm', '_relab']:
        pos = col.lower().find(marker)
        if pos > 0:
            return col[:pos]
    
    return col


def ensure_output_dir(output_dir):
    """Create the output directory (and parents) if needed and return its path."""
    os.makedirs(output_dir, exist_ok=True)
    return output_dir
