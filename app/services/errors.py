"""Import pipeline exceptions.

Only structural problems raise. Row-level data problems (bad amounts, missing
case names, missing dates) are absorbed by the parser and counted instead.
"""


class ImportStructuralError(RuntimeError):
    """The run cannot continue (missing file, wrong layout, unreachable DB)."""


class SourceFileNotFoundError(ImportStructuralError):
    def __init__(self, path):
        self.path = str(path)
        super().__init__(f"Source file not found: {self.path}")


class HeaderNotFoundError(ImportStructuralError):
    def __init__(self, anchors, max_scan: int, source: str = "source"):
        self.anchors = tuple(anchors)
        self.max_scan = max_scan
        super().__init__(
            f"Header row not found in {source}: none of {list(self.anchors)} "
            f"appear in the first {max_scan} rows"
        )


class SheetNotFoundError(ImportStructuralError):
    def __init__(self, sheet_name: str, available=()):
        self.sheet_name = sheet_name
        self.available = tuple(available)
        super().__init__(
            f"{sheet_name} sheet not found in workbook (sheets: {', '.join(self.available) or 'none'})"
        )


class SourceFormatError(ImportStructuralError):
    """The file exists but cannot be read as the expected format."""

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Cannot read {self.path}: {reason}")
