"""benchify — declarative benchmarking of command-line tools.

Describe tools, per-tag runners and tests; benchify cross-references
them, runs every pairing until the timings are stable, and reports
comparative statistics.
"""

__version__ = "0.1.0"
