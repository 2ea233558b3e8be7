"""
pipetrace: export GitLab CI pipelines as OpenTelemetry traces.
"""

__version__ = "0.1.0"
