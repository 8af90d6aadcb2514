"""Post-processing of documents after verification."""

from .annotations import AnnotationManager, annotate_documents, describe_failure

__all__ = ["AnnotationManager", "annotate_documents", "describe_failure"]
