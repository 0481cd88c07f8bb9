"""
Publication assembly: Markdown reports and academic-paper structures.
"""

from .write_up import generate_write_up, key_findings, success_rate
from .paper import AcademicPaper, PaperMetadata, assemble_paper, extract_keywords

__all__ = [
    "generate_write_up",
    "key_findings",
    "success_rate",
    "AcademicPaper",
    "PaperMetadata",
    "assemble_paper",
    "extract_keywords",
]
