"""Import pipeline and candidate sources."""

from DataShed.pipeline.importer import ImportPipeline, ImportSummary, create_executor
from DataShed.pipeline.sources import iter_directory, iter_jsonl

__all__ = ["ImportPipeline", "ImportSummary", "create_executor", "iter_directory", "iter_jsonl"]
