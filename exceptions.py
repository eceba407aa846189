class SubTrackerError(Exception):
    """Base class for errors raised by the tracker."""


class ImportFormatError(SubTrackerError, ValueError):
    """An import file could not be parsed at all (empty, no data rows, bad JSON)."""


class MonthNotFoundError(SubTrackerError, KeyError):
    """No financial data is stored for the requested month."""

    def __init__(self, month: int, year: int):
        self.month = month
        self.year = year
        super().__init__(f"No financial data for {year}-{month:02d}")

    def __str__(self):
        return self.args[0]
