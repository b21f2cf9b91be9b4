from .inference import clean_title, infer_metadata
from .types import InferredMetadata, TagSet

__all__ = ["InferredMetadata", "TagSet", "clean_title", "infer_metadata"]
