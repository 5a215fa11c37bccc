"""Exception taxonomy for footybets."""


class FootyBetsError(Exception):
    """Base class for all application errors."""


class UpstreamFetchError(FootyBetsError):
    """The external fixtures API returned non-2xx or could not be reached."""

    def __init__(self, endpoint: str, message: str, status_code: int | None = None):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"{endpoint}: {message}")


class DataAnomaly(FootyBetsError):
    """Upstream data is internally inconsistent (e.g. finished fixture without scores)."""


class BettingClosed(FootyBetsError):
    """Bet placement attempted at or after the match deadline."""


class MatchNotFound(FootyBetsError):
    """Bet placement referenced a match that is not in the store."""


class ReconciliationFault(FootyBetsError):
    """Bets break the points invariant after reconciliation (unawarded wins or stray points)."""

    def __init__(self, offenders: list[dict], report=None):
        self.offenders = offenders
        self.report = report
        super().__init__(f"{len(offenders)} bet(s) violate the points invariant")


class SettlementPhaseError(FootyBetsError):
    """A settlement phase failed. Carries the phase tag for alerting."""

    def __init__(self, phase: str, cause: BaseException, report=None):
        self.phase = phase
        self.cause = cause
        self.report = report
        super().__init__(f"[{phase}] {type(cause).__name__}: {cause}")
