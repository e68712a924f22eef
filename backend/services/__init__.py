# Mark services as a package and expose the analyzer modules for tests to monkeypatch.

from . import clinical_rules as clinical_rules  # noqa: F401
from . import measurements as measurements  # noqa: F401
from . import report_analysis as report_analysis  # noqa: F401

__all__ = [
    "clinical_rules",
    "measurements",
    "report_analysis",
]
