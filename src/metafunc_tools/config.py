# metafunc_tools/config.py
"""Default settings for the normalization, differential abundance and enrichment steps."""

import numpy as np

# Sample metadata
DEFAULT_GROUP_COL = "Group"
DEFAULT_LEVELS = ["healthy", "condition_A", "condition_B"]
DEFAULT_REFERENCE = "healthy"
SAMPLE_ID_COLUMNS = ["SampleName", "Sample", "SampleID", "Sample_ID", "sample_name", "sample_id"]

# Genome equivalents
GENOME_EQUIVALENTS_COL = "genome_equivalents"
READS_COL = "reads"
READ_LENGTH_COL = "mean_read_length"
GENOME_SIZE_COL = "genome_size"

# Normalization
AA_TO_KB = 3.0 / 1000.0

# Mean-variance trend
DEFAULT_SPAN = 0.5
MIN_GENES_FOR_TREND = 3

# q-values
DEFAULT_Q_THRESHOLD = 0.05
MIN_TESTS_FOR_PI0 = 20
PI0_LAMBDAS = np.round(np.arange(0.05, 0.96, 0.05), 2)
DEFAULT_PI0_METHOD = "smoother"
# effective degrees of freedom of the pi0 smoothing spline
PI0_SMOOTH_DF = 3

# Enrichment follow-up correction
DEFAULT_ENRICHMENT_CORRECTION = "fdr_bh"
