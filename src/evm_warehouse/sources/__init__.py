from .jsonl import ABSENT, NULL, FieldState, FieldValue, JsonlSource, RawRecord

__all__ = ["ABSENT", "NULL", "FieldState", "FieldValue", "JsonlSource", "RawRecord"]
